"""Run configuration.

One immutable value is built at startup and passed explicitly to everything
that needs it.
"""
from dataclasses import dataclass
from pathlib import Path

from incert.exceptions import ConfigurationError
from incert.merge import MergePolicy
from incert.oci.descriptor import Platform
from incert.oci.layer import DEFAULT_MODE
from incert.oci.reference import Reference

DEFAULT_CERT_PATH = "/etc/ssl/certs/ca-certificates.crt"
DEFAULT_PLATFORM = "linux/amd64"


@dataclass(frozen=True, slots=True)
class RewriteOptions:
    """What gets written into every rewritten image"""

    path: str = DEFAULT_CERT_PATH
    mode: int = DEFAULT_MODE
    uid: int = 0
    gid: int = 0
    policy: MergePolicy = MergePolicy.APPEND

    def __post_init__(self):
        if not self.path or self.path.endswith("/"):
            raise ConfigurationError(f"Invalid certificate path: {self.path!r}")
        if self.uid < 0 or self.gid < 0:
            raise ConfigurationError("Owner user and group ids must not be negative")


@dataclass(frozen=True, slots=True)
class Config:
    source: Reference
    destination: Reference
    ca_certs_file: Path | None = None
    ca_certs_image: Reference | None = None
    platform: Platform | None = None
    output_certs_path: Path | None = None
    rewrite: RewriteOptions = RewriteOptions()
    username: str | None = None
    password: str | None = None
    insecure: bool = False

    def __post_init__(self):
        if (self.ca_certs_file is None) == (self.ca_certs_image is None):
            raise ConfigurationError(
                "Exactly one of --ca-certs-file or --ca-certs-image-url must be provided"
            )
        if self.destination.digest is not None:
            raise ConfigurationError(
                f"Destination {self.destination} must be a tag, not a digest reference"
            )

    @property
    def destination_url(self) -> str:
        """The destination as given on the command line"""
        return self.destination.original or str(self.destination)

    @classmethod
    def from_options(
        cls,
        image_url: str,
        dest_image_url: str,
        ca_certs_file: str | None = None,
        ca_certs_image_url: str | None = None,
        platform: str | None = None,
        image_cert_path: str = DEFAULT_CERT_PATH,
        owner_user_id: int = 0,
        owner_group_id: int = 0,
        output_certs_path: str | None = None,
        replace_certs: bool = False,
        **kwargs,
    ) -> "Config":
        """Build the configuration from raw command line values"""
        return cls(
            source=Reference.parse(image_url),
            destination=Reference.parse(dest_image_url),
            ca_certs_file=Path(ca_certs_file) if ca_certs_file else None,
            ca_certs_image=(
                Reference.parse(ca_certs_image_url) if ca_certs_image_url else None
            ),
            platform=Platform.parse(platform) if platform else None,
            output_certs_path=Path(output_certs_path) if output_certs_path else None,
            rewrite=RewriteOptions(
                path=image_cert_path,
                uid=owner_user_id,
                gid=owner_group_id,
                policy=MergePolicy.REPLACE if replace_certs else MergePolicy.APPEND,
            ),
            **kwargs,
        )
