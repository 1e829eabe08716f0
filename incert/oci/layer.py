import gzip
import io
import logging
import tarfile

from pydantic import Field

from incert.exceptions import BuildError
from incert.oci.descriptor import Descriptor
from incert.oci.digest import calculate_digest
from incert.oci.media_types import OCI_LAYER

logger = logging.getLogger(__name__)

DEFAULT_MODE = 0o644


class Layer(Descriptor):
    """A filesystem layer, optionally carrying its compressed payload."""

    diff_id: str | None = Field(exclude=True, default=None)

    @classmethod
    def from_file(
        cls,
        path: str,
        content: bytes,
        mode: int = DEFAULT_MODE,
        uid: int = 0,
        gid: int = 0,
        media_type: str = OCI_LAYER,
    ) -> "Layer":
        """Create a new layer containing a single regular file at `path`

        The tar header needs the size up front, so `content` is fully
        buffered before anything is written.
        """
        info = tarfile.TarInfo(name=path.lstrip("/"))
        info.size = len(content)
        info.mode = mode
        info.uid = uid
        info.gid = gid
        # Set mtime to 0 to ensure the digest does not change if the file does not change
        info.mtime = 0
        info.type = tarfile.REGTYPE

        buffer = io.BytesIO()
        try:
            with tarfile.open(fileobj=buffer, mode="w") as tar:
                tar.addfile(info, io.BytesIO(content))
        except (OSError, tarfile.TarError) as e:
            raise BuildError(f"Failed to write layer for {path}: {e}") from e

        tarball = buffer.getvalue()
        zipped = gzip.compress(tarball, mtime=0)
        layer = cls(
            mediaType=media_type,
            digest=calculate_digest(zipped),
            size=len(zipped),
            data=zipped,
            diff_id=calculate_digest(tarball),
        )
        logger.debug(
            "Built layer %s for %s (%d bytes)", layer.digest, path, len(content)
        )
        return layer
