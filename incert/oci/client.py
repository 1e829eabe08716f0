from __future__ import annotations

import base64
import json
import logging
import os
import re
import subprocess
from collections.abc import Generator
from pathlib import Path
from urllib.parse import urlparse, urlunparse

import httpx

from incert.exceptions import AuthenticationError, FetchError, PushError
from incert.oci import media_types
from incert.oci.descriptor import Descriptor
from incert.oci.digest import calculate_digest

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"
DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", DOCKER_HUB}
DOCKER_HUB_SERVER = "https://index.docker.io/v1/"
# Username docker uses to mark the secret as an OAuth2 refresh token
IDENTITY_TOKEN_USER = "<token>"

_AUTH_PARAM = re.compile(r'(\w+)=(?:"([^"]*)"|([^\s,"]*))')


def _clean_url(registry_url: str, insecure: bool = False) -> str:
    if "://" not in registry_url:
        registry_url = f"{'http' if insecure else 'https'}://{registry_url}"
    parts = urlparse(registry_url)
    if parts.netloc in DOCKER_HUB_ALIASES:
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> tuple[str, dict[str, str]]:
    """Parse the WWW-Authenticate header into its scheme and parameters

    Quoted values may contain commas, e.g. `scope="repository:a/b:pull,push"`.
    """
    scheme, _, params = www_authenticate.strip().partition(" ")
    result = {
        key: quoted if quoted else bare
        for key, quoted, bare in _AUTH_PARAM.findall(params)
    }
    return scheme.lower(), result


def _basic_header(username: str | None, password: str) -> str:
    token = base64.b64encode(f"{username or ''}:{password}".encode("utf-8"))
    return f"Basic {token.decode('ascii')}"


def _credential_helper(helper: str, server: str) -> tuple[str, str] | None:
    """Ask `docker-credential-<helper>` for the credentials of `server`

    ref: https://github.com/docker/docker-credential-helpers#development
    """
    program = f"docker-credential-{helper}"
    try:
        result = subprocess.run(
            [program, "get"],
            input=server.encode("utf-8"),
            capture_output=True,
            check=False,
        )
    except OSError as e:
        raise AuthenticationError(f"Failed to run {program}: {e}") from e
    if result.returncode != 0:
        output = (result.stdout or result.stderr).decode("utf-8", "replace").strip()
        if "credentials not found" in output.lower():
            logger.debug("%s has no credentials for %s", program, server)
            return None
        raise AuthenticationError(f"{program} failed for {server}: {output}")
    try:
        reply = json.loads(result.stdout)
        return reply["Username"], reply["Secret"]
    except (ValueError, KeyError, TypeError) as e:
        raise AuthenticationError(f"Unexpected reply from {program}: {e}") from e


def docker_credentials(registry: str) -> tuple[str, str] | None:
    """Look up credentials for `registry` in the docker config file

    Per-registry `credHelpers` come first, then the `credsStore`, then the
    inline `auths.<host>` entries. An inline `identitytoken` is returned with
    the `<token>` username, the way credential helpers report one.
    """
    config_dir = os.environ.get("DOCKER_CONFIG")
    path = Path(config_dir) if config_dir else Path.home() / ".docker"
    try:
        config = json.loads((path / "config.json").read_text())
    except (OSError, ValueError):
        return None

    hosts = {registry}
    server = registry
    if registry in DOCKER_HUB_ALIASES:
        hosts = DOCKER_HUB_ALIASES | {DOCKER_HUB_SERVER}
        server = DOCKER_HUB_SERVER

    helpers = config.get("credHelpers") or {}
    for host in [server, *sorted(hosts)]:
        if host in helpers:
            return _credential_helper(helpers[host], server)
    if config.get("credsStore"):
        credentials = _credential_helper(config["credsStore"], server)
        if credentials is not None:
            return credentials

    for key, entry in (config.get("auths") or {}).items():
        host = urlparse(key).netloc if "://" in key else key
        if key not in hosts and host not in hosts:
            continue
        if entry.get("identitytoken"):
            return IDENTITY_TOKEN_USER, entry["identitytoken"]
        if not entry.get("auth"):
            continue
        try:
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
        except ValueError:
            logger.warning("Ignoring malformed docker credentials for %s", key)
            continue
        username, _, password = decoded.partition(":")
        return username, password
    return None


class RegistryAuth(httpx.Auth):
    """Answer registry authentication challenges.

    ref: https://distribution.github.io/distribution/spec/auth/token/
    """

    requires_response_body = True

    def __init__(self, username: str | None = None, password: str | None = None):
        self.username = username
        self.password = password
        self._tokens: dict[str, str] = {}
        self._header: str | None = None

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        if self._header is not None:
            request.headers["Authorization"] = self._header
        response = yield request
        if response.status_code != 401 or "WWW-Authenticate" not in response.headers:
            return

        scheme, challenge = _parse_www_auth(response.headers["WWW-Authenticate"])
        logger.debug("Authentication challenge: %s %s", scheme, challenge)
        if scheme == "basic":
            if not self.password:
                raise AuthenticationError(
                    f"{request.url.host} requires authentication, "
                    f"provide a username and/or password."
                )
            self._header = _basic_header(self.username, self.password)
        elif scheme == "bearer":
            scope = challenge.get("scope", "")
            if scope not in self._tokens:
                token_response = yield self._token_request(challenge)
                self._tokens[scope] = self._read_token(token_response, scope)
            self._header = f"Bearer {self._tokens[scope]}"
        else:
            return
        request.headers["Authorization"] = self._header
        yield request

    def _token_request(self, challenge: dict[str, str]) -> httpx.Request:
        if not challenge.get("realm"):
            raise AuthenticationError(f"Bearer challenge without a realm: {challenge}")
        params = {"service": challenge.get("service", "")}
        if challenge.get("scope"):
            params["scope"] = challenge["scope"]

        if self.username == IDENTITY_TOKEN_USER and self.password:
            # OAuth2 refresh token grant
            data = params | {
                "grant_type": "refresh_token",
                "refresh_token": self.password,
                "client_id": "incert",
            }
            return httpx.Request("POST", challenge["realm"], data=data)

        headers = {}
        if self.password:
            params["client_id"] = self.username or "incert"
            headers["Authorization"] = _basic_header(self.username, self.password)
        return httpx.Request("GET", challenge["realm"], params=params, headers=headers)

    @staticmethod
    def _read_token(response: httpx.Response, scope: str) -> str:
        host = response.request.url.host
        if response.status_code in (401, 403):
            raise AuthenticationError(f"{host} refused a token for '{scope}'")
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise AuthenticationError(
                f"{host} returned an unreadable token: {e}"
            ) from e
        if not isinstance(body, dict):
            body = {}
        token = body.get("token") or body.get("access_token")
        if not token:
            raise AuthenticationError(f"{host} returned no token for '{scope}'")
        return token


class Client:
    """Client for the OCI registry API."""

    def __init__(
        self,
        registry_url: str,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.registry_url = _clean_url(registry_url, insecure=insecure)
        if username is None and password is None:
            credentials = docker_credentials(urlparse(self.registry_url).netloc)
            username, password = credentials or (None, None)
        self.username = username
        self.password = password
        self._transport = transport
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"<Client {self.registry_url}>"

    @property
    def session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                auth=RegistryAuth(self.username, self.password),
                follow_redirects=True,
                max_redirects=5,
                transport=self._transport,
            )
        return self._session

    def head(self, uri, **kwargs):
        return self.session.head(f"{self.registry_url}{uri}", **kwargs)

    def get(self, uri, **kwargs):
        return self.session.get(f"{self.registry_url}{uri}", **kwargs)

    def post(self, uri, **kwargs):
        return self.session.post(f"{self.registry_url}{uri}", **kwargs)

    def put(self, uri, **kwargs):
        return self.session.put(f"{self.registry_url}{uri}", **kwargs)

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def pull_manifest(
        self, name: str, reference: str, media_type: str = media_types.ACCEPT
    ) -> Descriptor:
        """Pull a manifest, keeping its raw bytes so the digest is preserved"""
        uri = f"/v2/{name}/manifests/{reference}"
        try:
            response = self.get(uri, headers={"Accept": media_type})
            if response.status_code == 403:
                logger.debug(response.headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch manifest {name}:{reference}: {e}") from e
        data = response.content
        return Descriptor(
            mediaType=_media_type_of(data, response.headers.get("Content-Type")),
            digest=calculate_digest(data),
            size=len(data),
            data=data,
        )

    def pull_blob(self, name: str, digest: str) -> bytes:
        uri = f"/v2/{name}/blobs/{digest}"
        try:
            response = self.get(uri)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch blob {name}@{digest}: {e}") from e
        data = response.content
        if calculate_digest(data) != digest:
            raise FetchError(f"Blob {name}@{digest} does not match its digest")
        return data

    def blob_exists(self, name: str, digest: str) -> bool:
        try:
            response = self.head(f"/v2/{name}/blobs/{digest}")
        except (httpx.HTTPError, AuthenticationError) as e:
            raise PushError(f"Failed to check blob {name}@{digest}: {e}") from e
        return response.status_code == 200

    def push_blob(self, name: str, blob: bytes, digest: str):
        """Push a blob for repository `name`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        try:
            # Push the blob using the POST then PUT method
            response = self.post(
                f"/v2/{name}/blobs/uploads/",
                headers={"content-type": "application/octet-stream"},
            )
            response.raise_for_status()
            location = response.headers["location"]
            if location.startswith("/"):
                # Relative location, add the registry url
                put = self.put
            else:
                # Absolute location, use the location as is
                put = self.session.put
            response = put(
                location,
                content=blob,
                headers={"content-type": "application/octet-stream"},
                params={"digest": digest},
            )
            response.raise_for_status()
        except (httpx.HTTPError, AuthenticationError, KeyError) as e:
            raise PushError(f"Failed to push blob {name}@{digest}: {e}") from e
        logger.debug("Pushed blob %s@%s", name, digest)

    def push_manifest(
        self, name: str, descriptor: Descriptor, reference: str | None = None
    ) -> str:
        """Push a manifest for repository `name` and tag `reference`

        Returns the digest of the pushed manifest.

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests
        """
        reference = reference or descriptor.digest
        uri = f"/v2/{name}/manifests/{reference}"
        logger.debug("Pushing manifest %s:%s", name, reference)
        try:
            response = self.put(
                uri,
                content=descriptor.data,
                headers={"content-type": descriptor.mediaType},
            )
            content_type = response.headers.get("Content-Type", "")
            if not response.is_success and "application/json" in content_type:
                logger.error(response.json())
            response.raise_for_status()
        except (httpx.HTTPError, AuthenticationError) as e:
            raise PushError(f"Failed to push manifest {name}:{reference}: {e}") from e
        return response.headers.get("Docker-Content-Digest", descriptor.digest)


def _media_type_of(data: bytes, content_type: str | None) -> str:
    """Determine the media type of a manifest from its body or Content-Type"""
    try:
        declared = json.loads(data).get("mediaType")
    except (ValueError, AttributeError):
        declared = None
    if declared:
        return declared
    if content_type:
        return content_type.split(";", 1)[0].strip()
    return "application/octet-stream"
