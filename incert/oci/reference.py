import re
from dataclasses import dataclass, field

from incert.exceptions import ReferenceParseError
from incert.oci.digest import validate_digest

DOCKER_HUB = "docker.io"

# ref: https://github.com/distribution/reference/blob/main/regexp.go
_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(rf"^{_COMPONENT}(?:/{_COMPONENT})*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")


def _is_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True, slots=True)
class Reference:
    """A parsed image reference: `[registry/]repository[:tag][@digest]`"""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None
    # As typed by the user, before defaults are filled in
    original: str | None = field(default=None, compare=False, repr=False)

    def __str__(self):
        value = f"{self.registry}/{self.repository}"
        if self.tag is not None:
            value += f":{self.tag}"
        if self.digest is not None:
            value += f"@{self.digest}"
        return value

    @property
    def reference(self) -> str:
        """The tag or digest to address the manifest with"""
        return self.digest or self.tag or "latest"

    @classmethod
    def parse(cls, value: str) -> "Reference":
        remainder, _, digest = value.partition("@")
        if digest and not validate_digest(digest):
            raise ReferenceParseError(f"Invalid digest in reference {value!r}")

        first, sep, rest = remainder.partition("/")
        if sep and _is_registry(first):
            registry, path = first, rest
        else:
            registry, path = DOCKER_HUB, remainder

        tag = None
        last_slash = path.rfind("/")
        if ":" in path[last_slash + 1 :]:
            path, tag = path.rsplit(":", 1)
            if not TAG_PATTERN.match(tag):
                raise ReferenceParseError(f"Invalid tag in reference {value!r}")
        if registry == DOCKER_HUB and "/" not in path:
            path = f"library/{path}"
        if not REPOSITORY_PATTERN.match(path):
            raise ReferenceParseError(f"Invalid repository in reference {value!r}")

        if tag is None and not digest:
            tag = "latest"
        return cls(
            registry=registry,
            repository=path,
            tag=tag,
            digest=digest or None,
            original=value,
        )
