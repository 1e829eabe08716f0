"""Content digests.

An entity's identity is the sha256 of its serialized form; any change in
content yields a new identity.
"""
import hashlib
import re
from typing import Protocol

DIGEST_PATTERN = re.compile(r"^sha256:[a-f0-9]{64}$")


class Addressable(Protocol):
    @property
    def raw_manifest(self) -> bytes:
        ...


def calculate_digest(data: bytes | bytearray) -> str:
    """Return the digest of `data` in the "sha256:<hex>" form."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def validate_digest(digest: str) -> bool:
    return bool(DIGEST_PATTERN.match(digest))


def identity(entity: Addressable) -> str:
    """Return the content address of an image or index.

    The digest is derived from the serialized manifest every time it is asked
    for; values may cache it since they never change.
    """
    return calculate_digest(entity.raw_manifest)
