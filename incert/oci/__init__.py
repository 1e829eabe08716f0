"""OCI registry access for incert

This module provides a Python API for the subset of the OCI registry API
needed to pull an image or index, and to push a modified one back.
"""
import logging

from incert.exceptions import ConfigurationError, UnknownMediaTypeError
from incert.oci import media_types
from incert.oci.client import Client
from incert.oci.descriptor import Platform
from incert.oci.image import Image, ImageIndex, load
from incert.oci.layer import Layer
from incert.oci.reference import Reference

logger = logging.getLogger(__name__)

__all__ = [
    "Client",
    "Image",
    "ImageIndex",
    "Layer",
    "Platform",
    "Reference",
    "pull",
    "push",
    "select_platform",
]


def pull(reference: Reference, client: Client) -> Image | ImageIndex:
    """Resolve `reference` to an image or an index"""
    logger.info("Fetching %s", reference)
    return load(name=reference.repository, reference=reference.reference, client=client)


def select_platform(index: ImageIndex, platform: Platform) -> Image:
    """Resolve an index to the image for `platform`, descending nested indexes"""
    for entry in index.manifests:
        if media_types.is_index(entry.mediaType):
            child = index.child(entry)
            try:
                return select_platform(child, platform)
            except ConfigurationError:
                continue
        if entry.platform is not None and entry.platform.satisfies(platform):
            child = index.child(entry)
            if not isinstance(child, Image):
                raise UnknownMediaTypeError(entry.mediaType)
            logger.info("Selected %s for platform %s", entry.digest, platform)
            return child
    raise ConfigurationError(f"No image for platform {platform} in {index.digest}")


def push(target: Image | ImageIndex, reference: Reference, client: Client) -> str:
    """Push an image or index, and everything it refers to, to `reference`

    Returns the digest of the pushed root manifest.
    """
    _push_children(target, name=reference.repository, client=client)
    digest = client.push_manifest(
        name=reference.repository,
        descriptor=target.descriptor,
        reference=reference.reference,
    )
    logger.info("Pushed %s@%s", reference, digest)
    return digest


def _push_children(target: Image | ImageIndex, name: str, client: Client):
    match target:
        case Image():
            for descriptor in [target.manifest.config, *target.layers]:
                if client.blob_exists(name=name, digest=descriptor.digest):
                    logger.debug("Blob already exists: %s@%s", name, descriptor.digest)
                    continue
                client.push_blob(
                    name=name, blob=target.blob(descriptor), digest=descriptor.digest
                )
        case ImageIndex():
            for entry in target.manifests:
                child = target.child(entry)
                _push_children(child, name=name, client=client)
                client.push_manifest(name=name, descriptor=child.descriptor)
