"""Structural checks on certificate bundles.

Only the shape of the PEM encoding is checked, never what the certificates
say.
"""
import base64
import binascii
import logging
import re
from pathlib import Path

from incert.exceptions import CertificateFormatError, ConfigurationError

logger = logging.getLogger(__name__)

PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<type>[^-\r\n]+)-----\r?\n(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL,
)


def validate_certificates(data: bytes, source: str = "input") -> bytes:
    """Check that the first PEM block in `data` is a certificate

    Returns `data` unchanged.
    """
    block = PEM_BLOCK.search(data)
    if block is None or block["type"] != b"CERTIFICATE":
        raise CertificateFormatError(f"Failed to find any certificates in {source}")
    body = block["body"]
    if b":" in body:
        # Skip RFC 1421 headers
        body = body.split(b"\n\n", 1)[-1]
    try:
        base64.b64decode(b"".join(body.split()), validate=True)
    except binascii.Error as e:
        raise CertificateFormatError(f"Malformed certificate in {source}: {e}") from e
    return data


def read_certificates(path: Path) -> bytes:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read CA certificates file {path}: {e}"
        ) from e
    logger.debug("Read %d bytes from %s", len(data), path)
    return validate_certificates(data, source=str(path))
