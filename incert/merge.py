import enum


class MergePolicy(enum.Enum):
    """How new certificates are combined with the ones already in the image"""

    APPEND = "append"
    REPLACE = "replace"


def merge(
    existing: bytes | None,
    addition: bytes,
    policy: MergePolicy = MergePolicy.APPEND,
) -> bytes:
    """Combine the certificates found in the image with the new ones

    Under REPLACE `existing` is ignored and may be None.
    """
    if policy is MergePolicy.REPLACE:
        return addition
    if existing is None:
        raise ValueError("APPEND needs the existing content")
    return existing + addition + b"\n"
