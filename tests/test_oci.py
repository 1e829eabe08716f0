import pytest

from incert import oci
from incert.exceptions import ConfigurationError, UnknownMediaTypeError
from incert.flatten import locate_file
from incert.oci import Image, ImageIndex, Platform, Reference
from incert.oci.descriptor import Descriptor
from incert.oci.digest import calculate_digest, identity

CERT_PATH = "/etc/ssl/certs/ca-certificates.crt"


def test_push_then_pull_image(registry, base_image):
    reference = Reference.parse("registry.example.com/org/base:v1")

    digest = oci.push(base_image, reference, client=registry)
    pulled = oci.pull(reference, client=registry)

    assert digest == base_image.digest
    assert isinstance(pulled, Image)
    assert pulled.digest == base_image.digest
    assert pulled.raw_config == base_image.raw_config
    assert locate_file(pulled, CERT_PATH) == b"CERT_A\n"


def test_push_skips_existing_blobs(registry, base_image):
    reference = Reference.parse("registry.example.com/org/base:v1")
    oci.push(base_image, reference, client=registry)
    registry.pushed_blobs.clear()

    oci.push(base_image, reference, client=registry)

    assert registry.pushed_blobs == []


def test_push_copies_blobs_between_repositories(registry, base_image):
    base = Reference.parse("registry.example.com/org/base:v1")
    copy = Reference.parse("registry.example.com/org/copy:v1")
    oci.push(base_image, base, client=registry)
    pulled = oci.pull(base, client=registry)

    oci.push(pulled, copy, client=registry)

    assert {name for name, _ in registry.pushed_blobs} == {"org/base", "org/copy"}
    copied = oci.pull(copy, client=registry)
    assert locate_file(copied, CERT_PATH) == b"CERT_A\n"


def test_push_index_pushes_children_by_digest(registry, base_image, make_index):
    index = make_index(make_index(base_image))
    reference = Reference.parse("registry.example.com/org/multi:v1")

    oci.push(index, reference, client=registry)

    pulled = oci.pull(reference, client=registry)
    assert isinstance(pulled, ImageIndex)
    inner = pulled.child(pulled.manifests[0])
    assert isinstance(inner, ImageIndex)
    assert ("org/multi", base_image.digest) in registry.manifests
    assert inner.child(inner.manifests[0]).digest == base_image.digest


def test_pull_unknown_media_type(registry):
    data = b'{"schemaVersion": 1}'
    registry.manifests[("org/old", "v1")] = Descriptor(
        mediaType="application/vnd.docker.distribution.manifest.v1+json",
        digest=calculate_digest(data),
        size=len(data),
        data=data,
    )
    with pytest.raises(UnknownMediaTypeError):
        oci.pull(Reference.parse("registry.example.com/org/old:v1"), client=registry)


def test_identity_is_manifest_digest(base_image):
    assert identity(base_image) == calculate_digest(base_image.raw_manifest)
    assert base_image.descriptor.digest == identity(base_image)
    assert base_image.descriptor.size == len(base_image.raw_manifest)


def test_select_platform(base_image, make_layer, make_image, make_index):
    arm = make_image(make_layer({CERT_PATH: b"arm\n"}))
    arm_v6 = make_image(make_layer({CERT_PATH: b"armv6\n"}))
    index = make_index(
        ({"platform": {"os": "linux", "architecture": "amd64"}}, base_image),
        ({"platform": {"os": "linux", "architecture": "arm", "variant": "v6"}}, arm_v6),
        ({"platform": {"os": "linux", "architecture": "arm", "variant": "v7"}}, arm),
    )

    assert oci.select_platform(index, Platform.parse("linux/amd64")) is base_image
    assert oci.select_platform(index, Platform.parse("linux/arm/v7")) is arm
    assert oci.select_platform(index, Platform.parse("linux/arm")) is arm_v6
    with pytest.raises(ConfigurationError):
        oci.select_platform(index, Platform.parse("windows/amd64"))


def test_select_platform_in_nested_index(base_image, make_index):
    amd64 = {"platform": {"os": "linux", "architecture": "amd64"}}
    index = make_index(make_index((amd64, base_image)))
    assert oci.select_platform(index, Platform.parse("linux/amd64")) is base_image
