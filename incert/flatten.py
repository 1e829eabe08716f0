"""Flattened view of an image filesystem.

Layers are walked from the topmost down, so the first entry seen for a path
is the one that wins, and a file found near the top never causes lower layers
to be fetched.

ref: https://github.com/opencontainers/image-spec/blob/main/layer.md#whiteouts
"""
import logging
import posixpath
import tarfile
from collections.abc import Iterator

from incert.exceptions import TargetNotFoundError
from incert.oci.image import Image

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"
MAX_LINK_DEPTH = 8


def _clean(name: str) -> str:
    """Canonical form of an archive name, used to detect shadowing"""
    return posixpath.normpath(name.lstrip("/"))


def _strip_root(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def _is_under(name: str, directory: str) -> bool:
    return directory in ("", ".") or name.startswith(directory + "/")


def _hidden(name: str, deleted: set[str], opaque: set[str]) -> bool:
    if any(name == d or _is_under(name, d) for d in deleted):
        return True
    return any(_is_under(name, d) for d in opaque)


def extract(image: Image) -> Iterator[tuple[tarfile.TarInfo, tarfile.TarFile]]:
    """Yield every entry of the flattened filesystem with its open archive

    Whiteout markers are consumed, never yielded.
    """
    seen: set[str] = set()
    deleted: set[str] = set()
    opaque: set[str] = set()
    for position, layer in reversed(list(enumerate(image.layers))):
        logger.debug("Scanning layer %d %s", position, layer.digest)
        layer_deleted: set[str] = set()
        layer_opaque: set[str] = set()
        with image.open_layer(layer) as tar:
            for member in tar:
                name = _clean(member.name)
                directory, basename = posixpath.split(name)
                if basename == OPAQUE_WHITEOUT:
                    layer_opaque.add(directory)
                    continue
                if basename.startswith(WHITEOUT_PREFIX):
                    hidden = basename[len(WHITEOUT_PREFIX) :]
                    layer_deleted.add(posixpath.join(directory, hidden))
                    continue
                if name in seen or _hidden(name, deleted, opaque):
                    continue
                seen.add(name)
                yield member, tar
        # Whiteouts only affect the layers below the one declaring them
        deleted |= layer_deleted
        opaque |= layer_opaque


def locate_file(image: Image, path: str, _depth: int = 0) -> bytes:
    """Return the content of `path` in the flattened filesystem of `image`

    `/a/b` and `a/b` are the same path; nothing else matches. Links are
    followed to their target.
    """
    target = _strip_root(path)
    for member, tar in extract(image):
        if _strip_root(member.name) != target:
            continue
        if member.isreg():
            logger.debug("Found %s (%d bytes)", path, member.size)
            return tar.extractfile(member).read()
        if member.issym() or member.islnk():
            if _depth >= MAX_LINK_DEPTH:
                raise TargetNotFoundError(path, "has too many levels of links")
            if member.issym():
                link = posixpath.join(posixpath.dirname("/" + target), member.linkname)
            else:
                link = "/" + member.linkname.lstrip("/")
            logger.debug("Following link %s -> %s", path, link)
            return locate_file(image, posixpath.normpath(link), _depth + 1)
        raise TargetNotFoundError(path, "is not a regular file")
    raise TargetNotFoundError(path)
