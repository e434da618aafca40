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
Resolution of a container's overlay2 layer directories.

Layout followed:
    image/<driver>/layerdb/mounts/<container id>/mount-id   -> mount id
    <driver>/<mount id>/lower                             -> "l/ABC:l/DEF"
    <driver>/<mount id>/diff, <driver>/<mount id>/work
"""

import logging
import os
from typing import List, Optional, Type

from .catalog import Catalog, REPOSITORIES_DIR_NAME
from ..MODELS.layer_chain import LayerChain
from ..UTILS.cancellation import Context, ensure_context
from ..errors import (
    LayerChainUnavailable, LayerResolutionError, MountIDUnavailable, UnsupportedStorageDriver,
)

logger = logging.getLogger(__name__)

LOWERDIR_FILE_NAME = "lower"
MOUNT_ID_FILE_NAME = "mount-id"
SUPPORTED_DRIVERS = ("overlay2", "overlay")


class LayerResolver:
    """
    Maps a container id to the LayerChain its union mount is built from.
    """

    def __init__(self, catalog: Catalog, default_driver: str = "overlay2"):
        """
        Args:
            catalog: Catalog used to look up container configuration.
            default_driver: Driver assumed when the configuration names none.
        """
        self.catalog = catalog
        self.docker_root = catalog.docker_root
        self.default_driver = default_driver

    def driver_root(self, driver: str) -> str:
        return os.path.join(self.docker_root, driver)

    def mount_id_path(self, driver: str, container_id: str) -> str:
        return os.path.join(self.docker_root, REPOSITORIES_DIR_NAME, driver, "layerdb", "mounts",
                            container_id, MOUNT_ID_FILE_NAME)

    def resolve_layers(self, container_id: str, ctx: Optional[Context] = None) -> LayerChain:
        """
        Resolves the lower, upper and work directories of a container.

        Args:
            container_id: Full container id (directory name under containers/).
            ctx: Cancellation context.

        Returns:
            LayerChain with lower directories in on-disk order.

        Raises:
            ContainerNotFound: If the container has no config.v2.json.
            UnsupportedStorageDriver: If the driver is not overlay based.
            MountIDUnavailable: If the mount-id file is missing, empty, undecodable
                or names a directory outside the driver root.
            LayerChainUnavailable: If the lower file is missing or undecodable, or an
                entry resolves outside the driver root.
        """
        ctx = ensure_context(ctx)
        container = self.catalog.get_container(container_id)
        driver = container.driver or self.default_driver
        if driver not in SUPPORTED_DRIVERS:
            raise UnsupportedStorageDriver(f"storage driver {driver} is not supported",
                                           identifier=container_id)

        ctx.check()
        mount_id = self._read_mount_id(driver, container_id)
        logger.debug("container %s mount-id %s", container_id, mount_id)
        mount_dir = self._below_driver_root(driver, mount_id, MountIDUnavailable,
                                            self.mount_id_path(driver, container_id), container_id)

        ctx.check()
        lower_dirs = self._read_lower_dirs(driver, mount_dir, container_id)

        chain = LayerChain(
            container_id=container_id,
            mount_id=mount_id,
            driver=driver,
            lower_dirs=lower_dirs,
            upper_dir=os.path.join(mount_dir, "diff"),
            work_dir=os.path.join(mount_dir, "work"),
        )
        logger.debug("container overlay directories lowerdir=%s upperdir=%s workdir=%s",
                     ":".join(chain.lower_dirs), chain.upper_dir, chain.work_dir)
        return chain

    def _below_driver_root(self, driver: str, entry: str, error: Type[LayerResolutionError],
                           path: str, container_id: str) -> str:
        """
        Joins an on-disk layer reference under the driver root.

        Leading separators are dropped, so '/etc' names <driverroot>/etc
        rather than the analyst's /etc.

        Raises:
            error: If the reference is empty or resolves outside the driver root.
        """
        root = os.path.normpath(self.driver_root(driver))
        joined = os.path.normpath(os.path.join(root, entry.lstrip(os.sep)))
        if joined == root or os.path.commonpath([root, joined]) != root:
            raise error(f"layer reference {entry!r} resolves outside {root}", path=path, identifier=container_id)
        return joined

    @staticmethod
    def _read_text(path: str) -> str:
        with open(path, "rb") as f:
            return f.read().decode("utf-8").strip()

    def _read_mount_id(self, driver: str, container_id: str) -> str:
        path = self.mount_id_path(driver, container_id)
        logger.debug("container mount-id path %s", path)
        try:
            mount_id = self._read_text(path)
        except OSError as e:
            raise MountIDUnavailable(f"reading container mount-id: {e.strerror}",
                                     path=path, identifier=container_id)
        except UnicodeDecodeError as e:
            raise MountIDUnavailable(f"container mount-id is not valid UTF-8: {e.reason}",
                                     path=path, identifier=container_id)
        if not mount_id:
            raise MountIDUnavailable("container mount-id file is empty", path=path, identifier=container_id)
        return mount_id

    def _read_lower_dirs(self, driver: str, mount_dir: str, container_id: str) -> List[str]:
        path = os.path.join(mount_dir, LOWERDIR_FILE_NAME)
        logger.debug("container lowerdir path %s", path)
        try:
            data = self._read_text(path)
        except OSError as e:
            raise LayerChainUnavailable(f"reading lower file: {e.strerror}", path=path, identifier=container_id)
        except UnicodeDecodeError as e:
            raise LayerChainUnavailable(f"lower file is not valid UTF-8: {e.reason}",
                                        path=path, identifier=container_id)

        # A container built FROM scratch has no read-only parents
        if not data:
            return []
        return [self._below_driver_root(driver, entry, LayerChainUnavailable, path, container_id)
                for entry in data.split(":")]
