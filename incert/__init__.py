"""Append or replace the CA certificate bundle inside container images.

The whole run is all-or-nothing: the source is resolved and rewritten in
memory first, and only a completely rewritten image or index is pushed.
"""
import logging

from incert import oci
from incert.certs import read_certificates, validate_certificates
from incert.config import DEFAULT_PLATFORM, Config
from incert.exceptions import IncertError
from incert.flatten import locate_file
from incert.oci import Client, Image, ImageIndex, Platform, Reference
from incert.rewrite import rewrite

logger = logging.getLogger(__name__)

__all__ = ["Config", "IncertError", "load_certificates", "run"]


def _client(reference: Reference, config: Config) -> Client:
    return Client(
        registry_url=reference.registry,
        username=config.username,
        password=config.password,
        insecure=config.insecure,
    )


def _first_image(target: Image | ImageIndex) -> Image:
    """Return `target` itself, or the first image reachable from an index"""
    while isinstance(target, ImageIndex):
        if not target.manifests:
            raise IncertError(f"Index {target.digest} has no entries")
        target = target.child(target.manifests[0])
    return target


def load_certificates(config: Config) -> bytes:
    """Read the new certificates from a local file or from another image"""
    if config.ca_certs_file is not None:
        return read_certificates(config.ca_certs_file)

    with _client(config.ca_certs_image, config) as client:
        source = oci.pull(config.ca_certs_image, client=client)
        if isinstance(source, ImageIndex):
            source = oci.select_platform(
                source, config.platform or Platform.parse(DEFAULT_PLATFORM)
            )
        data = locate_file(source, config.rewrite.path)
    return validate_certificates(data, source=str(config.ca_certs_image))


def run(config: Config) -> str:
    """Rewrite the source image and push it to the destination

    Returns the pushed reference as `<destination>@sha256:<hex>`, with the
    destination spelled the way it was given.
    """
    certs = load_certificates(config)

    with _client(config.source, config) as source_client:
        target = oci.pull(config.source, client=source_client)
        if isinstance(target, ImageIndex) and config.platform is not None:
            target = oci.select_platform(target, config.platform)

        new_target = rewrite(target, certs, config.rewrite)

        if config.output_certs_path is not None:
            merged = locate_file(_first_image(new_target), config.rewrite.path)
            try:
                config.output_certs_path.write_bytes(merged)
            except OSError as e:
                raise IncertError(
                    f"Failed to write certificates to file {config.output_certs_path}: {e}"
                ) from e
            logger.info("Wrote certificates to %s", config.output_certs_path)

        with _client(config.destination, config) as dest_client:
            digest = oci.push(new_target, config.destination, client=dest_client)

    return f"{config.destination_url}@{digest}"
