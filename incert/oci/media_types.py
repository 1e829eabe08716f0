OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"

DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"

IMAGE_MEDIA_TYPES = frozenset({OCI_MANIFEST, DOCKER_MANIFEST})
INDEX_MEDIA_TYPES = frozenset({OCI_INDEX, DOCKER_MANIFEST_LIST})

ACCEPT = ", ".join([OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST])


def is_image(media_type: str | None) -> bool:
    return media_type in IMAGE_MEDIA_TYPES


def is_index(media_type: str | None) -> bool:
    return media_type in INDEX_MEDIA_TYPES


def layer_media_type(manifest_media_type: str | None) -> str:
    """Return the gzip layer media type matching the manifest family"""
    if manifest_media_type == DOCKER_MANIFEST:
        return DOCKER_LAYER
    return OCI_LAYER
