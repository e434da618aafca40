# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Top-level explorer for Docker managed containers.
"""

import logging
import os
from typing import List, Optional

from .catalog import Catalog
from .layer_resolver import LayerResolver
from ..ISOLATION.mount_engine import MountEngine, MountFacility
from ..MODELS.container_record import ContainerRecord
from ..MODELS.explorer_settings import (
    DEFAULT_LAYER_STORE, METADATA_FILENAME, METADATA_PLUGIN_DIR, ExplorerSettings,
)
from ..MODELS.image_record import ImageRecord
from ..MODELS.layer_chain import LayerChain
from ..MODELS.namespace_record import NamespaceRecord
from ..STORE.metadata_store import MetadataStore
from ..UTILS.cancellation import Context
from ..errors import NotSupportedError

logger = logging.getLogger(__name__)


class Explorer:
    """
    Ties the metadata store, catalog, layer resolver and mount engine
    together for one acquired Docker host.

    The metadata store is opened at construction and held until close().
    runtime_root is the containerd state directory; meta.db is looked up
    under it when no metadata file is given.
    """

    def __init__(self, root: str, runtime_root: str, store: MetadataStore,
                 layer_store: str = DEFAULT_LAYER_STORE, mount_engine: Optional[MountEngine] = None):
        self.root = root
        self.runtime_root = runtime_root
        self.layer_store = layer_store
        self.store = store
        self.catalog = Catalog(root, layer_store=layer_store)
        self.resolver = LayerResolver(self.catalog, default_driver=layer_store)
        self.mount_engine = mount_engine or MountEngine()

    @classmethod
    def new(cls, root: str, runtime_root: str, metadata_file: Optional[str] = None,
            layer_store: str = DEFAULT_LAYER_STORE,
            facility: Optional[MountFacility] = None) -> "Explorer":
        """
        Opens an explorer.

        Args:
            root: Docker state directory.
            runtime_root: containerd state directory.
            metadata_file: containerd meta.db, opened read-only. Defaults to
                io.containerd.metadata.v1.bolt/meta.db under runtime_root.
            layer_store: Layered filesystem driver directory name.
            facility: Mount facility; defaults to the host binaries.

        Raises:
            StoreUnavailable: If the metadata file cannot be opened.
        """
        if metadata_file is None:
            metadata_file = os.path.join(runtime_root, METADATA_PLUGIN_DIR, METADATA_FILENAME)
        store = MetadataStore.open(metadata_file)
        return cls(root, runtime_root, store, layer_store=layer_store,
                   mount_engine=MountEngine(facility))

    @classmethod
    def from_settings(cls, settings: ExplorerSettings,
                      facility: Optional[MountFacility] = None) -> "Explorer":
        store = MetadataStore.open(settings.resolved_metadata_file)
        engine = MountEngine(facility, mount_binary=settings.mount_binary,
                             umount_binary=settings.umount_binary)
        return cls(settings.docker_root, settings.containerd_root, store,
                   layer_store=settings.layer_store, mount_engine=engine)

    def list_namespaces(self, ctx: Optional[Context] = None) -> List[NamespaceRecord]:
        return [NamespaceRecord(name=name) for name in self.store.list_namespaces(ctx)]

    def list_containers(self, ctx: Optional[Context] = None) -> List[ContainerRecord]:
        return self.catalog.list_containers(ctx)

    def get_container(self, container_id: str) -> ContainerRecord:
        return self.catalog.get_container(container_id)

    def list_images(self, ctx: Optional[Context] = None) -> List[ImageRecord]:
        return self.catalog.list_images(ctx)

    def resolve_layers(self, container_id: str, ctx: Optional[Context] = None) -> LayerChain:
        return self.resolver.resolve_layers(container_id, ctx)

    def mount_container(self, container_id: str, mountpoint: str, ctx: Optional[Context] = None) -> LayerChain:
        """
        Mounts a container's filesystem read-only at mountpoint.

        Returns:
            The LayerChain that was mounted.
        """
        chain = self.resolver.resolve_layers(container_id, ctx)
        self.mount_engine.mount(chain, mountpoint, ctx)
        return chain

    def unmount_container(self, mountpoint: str, ctx: Optional[Context] = None) -> None:
        self.mount_engine.unmount(mountpoint, ctx)

    # Not implemented for Docker layouts

    def snapshot_root(self, snapshotter: str) -> str:
        raise NotSupportedError(f"snapshot root for {snapshotter} is not supported for docker")

    def list_content(self, ctx: Optional[Context] = None):
        raise NotSupportedError("listing content is not supported for docker")

    def list_snapshots(self, ctx: Optional[Context] = None):
        raise NotSupportedError("listing snapshots is not supported for docker")

    def info_container(self, container_id: str, spec: bool = False, ctx: Optional[Context] = None):
        raise NotSupportedError("container info is not supported for docker", identifier=container_id)

    def mount_all_containers(self, mountpoint: str, skip_support_containers: bool = False,
                             ctx: Optional[Context] = None):
        raise NotSupportedError("mounting all containers is not supported for docker", path=mountpoint)

    def close(self) -> None:
        """
        Releases the metadata store. Safe to call repeatedly.
        """
        self.store.close()

    def __enter__(self) -> "Explorer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
