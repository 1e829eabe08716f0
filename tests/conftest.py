import base64
import gzip
import io
import tarfile

import pytest

from incert.exceptions import FetchError
from incert.oci import media_types
from incert.oci.config import ImageConfig, RootFS
from incert.oci.descriptor import Descriptor, Platform
from incert.oci.digest import calculate_digest
from incert.oci.image import Image, ImageIndex
from incert.oci.index import Index, ManifestEntry
from incert.oci.layer import Layer
from incert.oci.manifest import Manifest

CERT_PATH = "/etc/ssl/certs/ca-certificates.crt"

PEM_CERT = (
    b"-----BEGIN CERTIFICATE-----\n"
    + base64.encodebytes(b"not a real certificate, only its shape matters")
    + b"-----END CERTIFICATE-----\n"
)


def _layer(entries: dict) -> Layer:
    """Build a layer from `{name: content}`

    Content is bytes for a regular file, ("symlink", target), ("link", target)
    or ("dir",).
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in entries.items():
            info = tarfile.TarInfo(name)
            if isinstance(content, bytes):
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
                continue
            kind, *target = content
            info.type = {
                "symlink": tarfile.SYMTYPE,
                "link": tarfile.LNKTYPE,
                "dir": tarfile.DIRTYPE,
            }[kind]
            if target:
                info.linkname = target[0]
            tar.addfile(info)
    tarball = buffer.getvalue()
    zipped = gzip.compress(tarball, mtime=0)
    return Layer(
        mediaType=media_types.OCI_LAYER,
        digest=calculate_digest(zipped),
        size=len(zipped),
        data=zipped,
        diff_id=calculate_digest(tarball),
    )


def _image(
    *layers: Layer, media_type: str = media_types.OCI_MANIFEST, history: bool = True
) -> Image:
    config = ImageConfig.model_validate(
        {
            "architecture": "amd64",
            "os": "linux",
            "config": {"Env": ["PATH=/usr/bin"]},
            "rootfs": RootFS(diff_ids=[layer.diff_id for layer in layers]).model_dump(),
            **({"history": [{"created_by": "base"}] * len(layers)} if history else {}),
        }
    )
    raw_config = config.dump()
    manifest = Manifest(
        schemaVersion=2,
        mediaType=media_type,
        config=Descriptor(
            mediaType=media_types.OCI_CONFIG,
            digest=calculate_digest(raw_config),
            size=len(raw_config),
        ),
        layers=list(layers),
    )
    return Image(manifest=manifest, config=config, raw_config=raw_config)


def _index(
    *children: Image | ImageIndex | tuple[dict, Image | ImageIndex],
    media_type: str = media_types.OCI_INDEX,
    annotations: dict[str, str] | None = None,
) -> ImageIndex:
    """Build an index over `children`, each optionally paired with entry metadata"""
    entries = []
    for child in children:
        metadata = {}
        if isinstance(child, tuple):
            metadata, child = child
        descriptor = child.descriptor
        entry = ManifestEntry.model_validate(
            {
                "mediaType": descriptor.mediaType,
                "digest": descriptor.digest,
                "size": descriptor.size,
                **metadata,
            }
        )
        entries.append((entry, child))
    return ImageIndex.from_entries(
        Index(schemaVersion=2, mediaType=media_type, annotations=annotations), entries
    )


@pytest.fixture
def make_layer():
    return _layer


@pytest.fixture
def make_image():
    return _image


@pytest.fixture
def make_index():
    return _index


@pytest.fixture
def base_image() -> Image:
    """A single layer image with a certificate bundle"""
    return _image(
        _layer(
            {
                "etc/": ("dir",),
                CERT_PATH.lstrip("/"): b"CERT_A\n",
                "etc/hostname": b"base\n",
            }
        )
    )


@pytest.fixture
def linux_amd64() -> Platform:
    return Platform(os="linux", architecture="amd64")


class FakeRegistry:
    """In-memory stand-in for `incert.oci.Client`, shared by every repository"""

    def __init__(self):
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.manifests: dict[tuple[str, str], Descriptor] = {}
        self.pushed_blobs: list[tuple[str, str]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    def pull_manifest(self, name, reference, media_type=media_types.ACCEPT):
        try:
            return self.manifests[(name, reference)]
        except KeyError:
            raise FetchError(f"{name}:{reference} not found") from None

    def pull_blob(self, name, digest):
        try:
            return self.blobs[(name, digest)]
        except KeyError:
            raise FetchError(f"{name}@{digest} not found") from None

    def blob_exists(self, name, digest):
        return (name, digest) in self.blobs

    def push_blob(self, name, blob, digest):
        assert calculate_digest(blob) == digest
        self.blobs[(name, digest)] = blob
        self.pushed_blobs.append((name, digest))

    def push_manifest(self, name, descriptor, reference=None):
        self.manifests[(name, descriptor.digest)] = descriptor
        if reference is not None:
            self.manifests[(name, reference)] = descriptor
        return descriptor.digest


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def pem_cert() -> bytes:
    return PEM_CERT
