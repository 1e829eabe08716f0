from typing import Any

from pydantic import BaseModel, ConfigDict


class RootFS(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = "layers"
    diff_ids: list[str] = []


class ImageConfig(BaseModel):
    """The parts of the image configuration a new layer has to touch.

    Every other field is carried along untouched.

    ref: https://github.com/opencontainers/image-spec/blob/main/config.md
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    rootfs: RootFS = RootFS()
    history: list[dict[str, Any]] | None = None

    def with_layer(self, diff_id: str, created_by: str) -> "ImageConfig":
        """Return a copy of the config describing one more layer on top"""
        rootfs = RootFS.model_validate(
            self.rootfs.model_dump() | {"diff_ids": [*self.rootfs.diff_ids, diff_id]}
        )
        data = self.model_dump(exclude_unset=True) | {"rootfs": rootfs.model_dump()}
        if self.history is not None:
            data["history"] = [*self.history, {"created_by": created_by}]
        return ImageConfig.model_validate(data)

    def dump(self) -> bytes:
        # Only what was read or explicitly set is written back
        return self.model_dump_json(exclude_unset=True).encode("utf-8")
