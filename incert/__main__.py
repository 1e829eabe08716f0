import logging

import click

import incert
from incert.config import DEFAULT_CERT_PATH
from incert.merge import MergePolicy


@click.command(context_settings={"auto_envvar_prefix": "INCERT"})
@click.option(
    "--image-url",
    required=True,
    help="The URL of the image to append the CA certificates to",
)
@click.option(
    "--dest-image-url",
    required=True,
    help="The URL of the image to push the modified image to",
)
@click.option(
    "--ca-certs-file",
    type=click.Path(dir_okay=False),
    help="The path to the local CA certificates file",
)
@click.option(
    "--ca-certs-image-url",
    help="The URL of an image to extract the CA certificates from",
)
@click.option(
    "--platform",
    default=None,
    help="Only rewrite this platform (os/arch[/variant]) of a multi-platform image",
)
@click.option(
    "--image-cert-path",
    default=DEFAULT_CERT_PATH,
    show_default=True,
    help="The path to the certificate file in the image",
)
@click.option(
    "--owner-user-id",
    type=int,
    default=0,
    show_default=True,
    help="The user ID of the owner of the certificate file in the image",
)
@click.option(
    "--owner-group-id",
    type=int,
    default=0,
    show_default=True,
    help="The group ID of the owner of the certificate file in the image",
)
@click.option(
    "--output-certs-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Output the (appended) certificates file from the image to a local file",
)
@click.option(
    "--replace-certs",
    is_flag=True,
    help="Replace the certificates in the certificate file instead of appending them",
)
@click.option("-u", "--username", help="Registry username", default=None)
@click.option("-p", "--password", help="Registry password", default=None)
@click.option(
    "--insecure", is_flag=True, help="Use plain HTTP to talk to the registries"
)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
def cli(debug: bool, **options):
    """Appends CA certificates to container images and pushes the modified image."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING)
    try:
        config = incert.Config.from_options(**options)
        reference = incert.run(config)
    except incert.IncertError as e:
        raise click.ClickException(str(e)) from e
    action = "replaced" if config.rewrite.policy is MergePolicy.REPLACE else "appended"
    click.echo(
        f"Successfully {action} CA certificates in image {config.destination_url}",
        err=True,
    )
    click.echo(reference)


if __name__ == "__main__":
    cli()
