"""Rewrite images and indexes to carry a new certificate bundle.

An image gets one new layer on top holding the merged bundle. An index is
rebuilt entry by entry, keeping each entry's metadata and pointing it at the
rewritten child.
"""
import logging

from incert.config import RewriteOptions
from incert.exceptions import IndexDepthError, UnknownMediaTypeError
from incert.flatten import locate_file
from incert.merge import MergePolicy, merge
from incert.oci import media_types
from incert.oci.image import Image, ImageIndex
from incert.oci.index import ManifestEntry
from incert.oci.layer import Layer

logger = logging.getLogger(__name__)

MAX_INDEX_DEPTH = 8
CREATED_BY = "incert: ca-certificates"


def build_layer(image: Image, certs: bytes, options: RewriteOptions) -> Layer:
    """Build the layer holding the merged certificate bundle for `image`"""
    existing = None
    if options.policy is MergePolicy.APPEND:
        existing = locate_file(image, options.path)
    return Layer.from_file(
        options.path,
        merge(existing, certs, options.policy),
        mode=options.mode,
        uid=options.uid,
        gid=options.gid,
        media_type=media_types.layer_media_type(image.manifest.mediaType),
    )


def rewrite_image(image: Image, certs: bytes, options: RewriteOptions) -> Image:
    new_image = image.append(build_layer(image, certs, options), created_by=CREATED_BY)
    logger.info("Rewrote image %s -> %s", image.digest, new_image.digest)
    return new_image


def rewrite_index(
    index: ImageIndex,
    certs: bytes,
    options: RewriteOptions,
    _depth: int = 0,
    _done: dict[str, Image | ImageIndex] | None = None,
) -> ImageIndex:
    """Rewrite every image reachable from `index`

    Entry count, order and metadata are preserved; only the digest and size
    of each entry change. Children shared between entries are rewritten once.
    """
    if _depth > MAX_INDEX_DEPTH:
        raise IndexDepthError(f"Indexes nested deeper than {MAX_INDEX_DEPTH} levels")
    done = {} if _done is None else _done

    # Fail on unknown entries before doing any work
    for entry in index.manifests:
        if not (
            media_types.is_image(entry.mediaType)
            or media_types.is_index(entry.mediaType)
        ):
            raise UnknownMediaTypeError(entry.mediaType)

    entries: list[tuple[ManifestEntry, Image | ImageIndex]] = []
    for entry in index.manifests:
        if entry.digest not in done:
            logger.debug(
                "Rewriting %s %s (%s)", entry.mediaType, entry.digest, entry.platform
            )
            done[entry.digest] = _rewrite_entry(
                index, entry, certs, options, _depth, done
            )
        child = done[entry.digest]
        descriptor = child.descriptor
        update = {"digest": descriptor.digest, "size": descriptor.size}
        entries.append((entry.model_copy(update=update), child))
    new_index = ImageIndex.from_entries(index.index, entries)
    logger.info("Rewrote index %s -> %s", index.digest, new_index.digest)
    return new_index


def _rewrite_entry(
    index: ImageIndex,
    entry: ManifestEntry,
    certs: bytes,
    options: RewriteOptions,
    depth: int,
    done: dict[str, Image | ImageIndex],
) -> Image | ImageIndex:
    match index.child(entry):
        case ImageIndex() as child if media_types.is_index(entry.mediaType):
            return rewrite_index(child, certs, options, _depth=depth + 1, _done=done)
        case Image() as child if media_types.is_image(entry.mediaType):
            return rewrite_image(child, certs, options)
        case _:
            raise UnknownMediaTypeError(entry.mediaType)


def rewrite(
    target: Image | ImageIndex, certs: bytes, options: RewriteOptions
) -> Image | ImageIndex:
    """Rewrite an image or a whole index"""
    match target:
        case ImageIndex():
            return rewrite_index(target, certs, options)
        case Image():
            return rewrite_image(target, certs, options)
        case _:
            raise TypeError(f"Can not rewrite {target!r}")
