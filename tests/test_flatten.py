import pytest

from incert.exceptions import FetchError, TargetNotFoundError
from incert.flatten import extract, locate_file
from incert.oci.image import Image
from incert.oci.layer import Layer


def test_locate_in_single_layer(base_image):
    assert locate_file(base_image, "/etc/ssl/certs/ca-certificates.crt") == b"CERT_A\n"


def test_later_layer_wins(make_layer, make_image):
    image = make_image(
        make_layer({"etc/certs.pem": b"old"}),
        make_layer({"etc/certs.pem": b"new"}),
    )
    assert locate_file(image, "/etc/certs.pem") == b"new"


def test_earlier_layer_still_visible(make_layer, make_image):
    image = make_image(
        make_layer({"etc/certs.pem": b"old"}),
        make_layer({"etc/other": b"unrelated"}),
    )
    assert locate_file(image, "/etc/certs.pem") == b"old"


@pytest.mark.parametrize(
    "entry,path",
    [
        ("a/b", "/a/b"),
        ("a/b", "a/b"),
        ("/a/b", "a/b"),
        ("/a/b", "/a/b"),
    ],
)
def test_leading_separator_is_optional(make_layer, make_image, entry, path):
    image = make_image(make_layer({entry: b"found"}))
    assert locate_file(image, path) == b"found"


@pytest.mark.parametrize("entry", ["a/bc", "x/a/b", "a/b/c", "a"])
def test_no_partial_matches(make_layer, make_image, entry):
    image = make_image(make_layer({entry: b"nope"}))
    with pytest.raises(TargetNotFoundError) as exc_info:
        locate_file(image, "/a/b")
    assert exc_info.value.path == "/a/b"


def test_whiteout_hides_lower_file(make_layer, make_image):
    image = make_image(
        make_layer({"etc/certs.pem": b"old"}),
        make_layer({"etc/.wh.certs.pem": b""}),
    )
    with pytest.raises(TargetNotFoundError):
        locate_file(image, "/etc/certs.pem")


def test_whiteout_does_not_hide_same_or_higher_layers(make_layer, make_image):
    image = make_image(
        make_layer({"etc/.wh.certs.pem": b""}),
        make_layer({"etc/certs.pem": b"recreated"}),
    )
    assert locate_file(image, "/etc/certs.pem") == b"recreated"


def test_opaque_whiteout_hides_directory_contents(make_layer, make_image):
    image = make_image(
        make_layer({"etc/ssl/certs.pem": b"old", "etc/keep": b"kept"}),
        make_layer({"etc/ssl/.wh..wh..opq": b"", "etc/ssl/other": b"new"}),
    )
    with pytest.raises(TargetNotFoundError):
        locate_file(image, "/etc/ssl/certs.pem")
    assert locate_file(image, "/etc/ssl/other") == b"new"
    assert locate_file(image, "/etc/keep") == b"kept"


def test_extract_yields_each_path_once(make_layer, make_image):
    image = make_image(
        make_layer({"a": b"1", "b": b"1"}),
        make_layer({"./a": b"2", "c": b"2", ".wh.b": b""}),
    )
    names = sorted(member.name.lstrip("./") for member, _ in extract(image))
    assert names == ["a", "c"]


def test_top_layer_match_does_not_fetch_lower_layers(make_layer, make_image):
    top = make_layer({"etc/certs.pem": b"top"})
    unreachable = Layer(mediaType=top.mediaType, digest="sha256:" + "0" * 64, size=1)
    base = make_image(top)
    image = Image(
        manifest=base.manifest.model_copy(update={"layers": [unreachable, top]}),
        config=base.config,
    )

    assert locate_file(image, "/etc/certs.pem") == b"top"
    with pytest.raises(FetchError):
        locate_file(image, "/missing")


def test_symlink_is_followed(make_layer, make_image):
    image = make_image(
        make_layer(
            {
                "etc/pki/tls/certs/ca-bundle.crt": b"bundle",
                "etc/ssl/certs/ca-certificates.crt": (
                    "symlink",
                    "../../pki/tls/certs/ca-bundle.crt",
                ),
                "etc/ssl/cert.pem": ("symlink", "/etc/pki/tls/certs/ca-bundle.crt"),
            }
        )
    )
    assert locate_file(image, "/etc/ssl/certs/ca-certificates.crt") == b"bundle"
    assert locate_file(image, "/etc/ssl/cert.pem") == b"bundle"


def test_hardlink_is_followed(make_layer, make_image):
    image = make_image(make_layer({"etc/a": b"data", "etc/b": ("link", "etc/a")}))
    assert locate_file(image, "/etc/b") == b"data"


def test_symlink_loop_fails(make_layer, make_image):
    image = make_image(make_layer({"a": ("symlink", "b"), "b": ("symlink", "a")}))
    with pytest.raises(TargetNotFoundError):
        locate_file(image, "/a")


def test_directory_is_not_a_file(make_layer, make_image):
    image = make_image(make_layer({"etc/ssl": ("dir",)}))
    with pytest.raises(TargetNotFoundError):
        locate_file(image, "/etc/ssl")
