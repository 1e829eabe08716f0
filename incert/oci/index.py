from pydantic import BaseModel, ConfigDict

from incert.oci.descriptor import Descriptor, Platform


class ManifestEntry(Descriptor):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    platform: Platform | None = None


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    schemaVersion: int = 2
    mediaType: str | None = None
    artifactType: str | None = None
    manifests: list[ManifestEntry] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def dump(self) -> bytes:
        return self.model_dump_json(exclude_none=True, by_alias=True).encode("utf-8")
