"""Immutable image and index values.

An `Image` or `ImageIndex` is either backed by a registry repository, from
which missing blobs and child manifests are pulled on demand, or held fully in
memory. Every modification returns a new value.
"""
from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from functools import cached_property
from typing import TYPE_CHECKING, Iterator

from pydantic import ValidationError

from incert.exceptions import FetchError, UnknownMediaTypeError
from incert.oci import media_types
from incert.oci.config import ImageConfig
from incert.oci.descriptor import Descriptor
from incert.oci.digest import calculate_digest, identity
from incert.oci.index import Index, ManifestEntry
from incert.oci.layer import Layer
from incert.oci.manifest import Manifest

if TYPE_CHECKING:
    from incert.oci.client import Client

logger = logging.getLogger(__name__)


class Image:
    """A single platform image: manifest, config and a way to reach its layers"""

    def __init__(
        self,
        manifest: Manifest,
        config: ImageConfig,
        raw_config: bytes | None = None,
        raw_manifest: bytes | None = None,
        name: str | None = None,
        client: Client | None = None,
    ):
        self.manifest = manifest
        self.config = config
        self._raw_config = raw_config
        self._raw_manifest = raw_manifest
        self.name = name
        self.client = client

    def __repr__(self):
        return f"<Image {self.digest}>"

    @property
    def media_type(self) -> str:
        return self.manifest.mediaType or media_types.OCI_MANIFEST

    @property
    def layers(self) -> list[Layer]:
        return self.manifest.layers

    @cached_property
    def raw_config(self) -> bytes:
        if self._raw_config is not None:
            return self._raw_config
        return self.config.dump()

    @cached_property
    def raw_manifest(self) -> bytes:
        if self._raw_manifest is not None:
            return self._raw_manifest
        return self.manifest.dump()

    @cached_property
    def descriptor(self) -> Descriptor:
        data = self.raw_manifest
        return Descriptor(
            mediaType=self.media_type,
            digest=identity(self),
            size=len(data),
            data=data,
        )

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    def blob(self, descriptor: Descriptor) -> bytes:
        """Return the content of a layer or config blob of this image"""
        if descriptor.data is not None:
            return descriptor.data
        if descriptor.digest == self.manifest.config.digest:
            return self.raw_config
        if self.client is None or self.name is None:
            raise FetchError(f"Blob {descriptor.digest} is not available")
        return self.client.pull_blob(name=self.name, digest=descriptor.digest)

    @contextmanager
    def open_layer(self, layer: Layer) -> Iterator[tarfile.TarFile]:
        """Open a layer as a tar archive, whatever its compression"""
        try:
            with tarfile.open(fileobj=io.BytesIO(self.blob(layer)), mode="r:*") as tar:
                yield tar
        except tarfile.TarError as e:
            raise FetchError(
                f"Layer {layer.digest} is not a readable archive: {e}"
            ) from e

    def append(self, layer: Layer, created_by: str = "incert") -> Image:
        """Return a new image with `layer` on top of the existing layers"""
        if layer.diff_id is None:
            raise ValueError(f"Missing {layer.__class__.__name__}.diff_id")
        config = self.config.with_layer(layer.diff_id, created_by=created_by)
        raw_config = config.dump()
        config_descriptor = Descriptor.model_validate(
            self.manifest.config.model_dump(exclude_none=True, by_alias=True)
            | {"digest": calculate_digest(raw_config), "size": len(raw_config)}
        )
        manifest = self.manifest.model_copy(
            update={"config": config_descriptor, "layers": [*self.layers, layer]}
        )
        logger.debug("Appended layer %s to %s", layer.digest, self.digest)
        return Image(
            manifest=manifest,
            config=config,
            raw_config=raw_config,
            name=self.name,
            client=self.client,
        )

    @classmethod
    def from_descriptor(
        cls, name: str, descriptor: Descriptor, client: Client
    ) -> Image:
        """Build an image from a pulled manifest, pulling its config"""
        try:
            manifest = Manifest.model_validate_json(descriptor.data)
        except ValidationError as e:
            raise FetchError(f"Invalid image manifest {descriptor.digest}: {e}") from e
        raw_config = client.pull_blob(name=name, digest=manifest.config.digest)
        try:
            config = ImageConfig.model_validate_json(raw_config)
        except ValidationError as e:
            raise FetchError(
                f"Invalid image config {manifest.config.digest}: {e}"
            ) from e
        return cls(
            manifest=manifest,
            config=config,
            raw_config=raw_config,
            raw_manifest=descriptor.data,
            name=name,
            client=client,
        )


class ImageIndex:
    """A multi-platform index and the images or indexes it refers to"""

    def __init__(
        self,
        index: Index,
        children: Mapping[str, Image | ImageIndex] | None = None,
        raw_manifest: bytes | None = None,
        name: str | None = None,
        client: Client | None = None,
    ):
        self.index = index
        self._children = dict(children or {})
        self._raw_manifest = raw_manifest
        self.name = name
        self.client = client

    def __repr__(self):
        return f"<ImageIndex {self.digest}>"

    @property
    def media_type(self) -> str:
        return self.index.mediaType or media_types.OCI_INDEX

    @property
    def manifests(self) -> list[ManifestEntry]:
        return self.index.manifests

    @cached_property
    def raw_manifest(self) -> bytes:
        if self._raw_manifest is not None:
            return self._raw_manifest
        return self.index.dump()

    @cached_property
    def descriptor(self) -> Descriptor:
        data = self.raw_manifest
        return Descriptor(
            mediaType=self.media_type,
            digest=identity(self),
            size=len(data),
            data=data,
        )

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    def child(self, entry: ManifestEntry) -> Image | ImageIndex:
        """Return the image or index an entry refers to"""
        if entry.digest in self._children:
            return self._children[entry.digest]
        if self.client is None or self.name is None:
            raise FetchError(f"Manifest {entry.digest} is not available")
        return load(
            name=self.name,
            reference=entry.digest,
            client=self.client,
            media_type=entry.mediaType,
        )

    @classmethod
    def from_entries(
        cls,
        index: Index,
        entries: Iterable[tuple[ManifestEntry, Image | ImageIndex]],
    ) -> ImageIndex:
        """Return a new index like `index`, listing the given children in order"""
        entries = list(entries)
        new_index = index.model_copy(update={"manifests": [e for e, _ in entries]})
        return cls(
            index=new_index,
            children={entry.digest: child for entry, child in entries},
        )

    @classmethod
    def from_descriptor(
        cls, name: str, descriptor: Descriptor, client: Client
    ) -> ImageIndex:
        try:
            index = Index.model_validate_json(descriptor.data)
        except ValidationError as e:
            raise FetchError(f"Invalid image index {descriptor.digest}: {e}") from e
        return cls(index=index, raw_manifest=descriptor.data, name=name, client=client)


def load(
    name: str, reference: str, client: Client, media_type: str = media_types.ACCEPT
) -> Image | ImageIndex:
    """Pull a manifest and wrap it as an image or index, by media type"""
    descriptor = client.pull_manifest(
        name=name, reference=reference, media_type=media_type
    )
    logger.debug("Pulled %s %s@%s", descriptor.mediaType, name, descriptor.digest)
    match descriptor.mediaType:
        case mt if media_types.is_index(mt):
            return ImageIndex.from_descriptor(
                name=name, descriptor=descriptor, client=client
            )
        case mt if media_types.is_image(mt):
            return Image.from_descriptor(
                name=name, descriptor=descriptor, client=client
            )
        case _:
            raise UnknownMediaTypeError(descriptor.mediaType)
