from pydantic import BaseModel, ConfigDict, Field

from incert.exceptions import ConfigurationError


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    mediaType: str
    digest: str
    size: int
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    artifactType: str | None = None
    data: bytes | None = Field(exclude=True, default=None)


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    architecture: str
    os: str
    osVersion: str | None = Field(default=None, alias="os.version")
    osFeatures: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None

    def __str__(self):
        return "/".join(p for p in (self.os, self.architecture, self.variant) if p)

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse `os/architecture[/variant]`"""
        os_, _, rest = value.partition("/")
        architecture, _, variant = rest.partition("/")
        if not os_ or not architecture or "/" in variant:
            raise ConfigurationError(f"Invalid platform: {value!r}")
        return cls(os=os_, architecture=architecture, variant=variant or None)

    def satisfies(self, wanted: "Platform") -> bool:
        """Return True if this platform matches the `wanted` selector.

        A selector without a variant matches any variant.
        """
        if (self.os, self.architecture) != (wanted.os, wanted.architecture):
            return False
        return wanted.variant is None or wanted.variant == self.variant
