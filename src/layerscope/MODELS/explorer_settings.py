"""
Models for explorer configuration.
"""
import os
from typing import Optional
from pydantic import BaseModel

DEFAULT_DOCKER_ROOT = "/var/lib/docker"
DEFAULT_CONTAINERD_ROOT = "/var/lib/containerd"
METADATA_PLUGIN_DIR = "io.containerd.metadata.v1.bolt"
METADATA_FILENAME = "meta.db"
DEFAULT_LAYER_STORE = "overlay2"


class ExplorerSettings(BaseModel):
    """
    Locations of the acquired runtime artifacts.

    Paths are interpreted as-is, so point them at the mounted image
    (e.g. /mnt/evidence/var/lib/docker) rather than the live host.
    """
    docker_root: str = DEFAULT_DOCKER_ROOT
    containerd_root: str = DEFAULT_CONTAINERD_ROOT
    metadata_file: Optional[str] = None
    layer_store: str = DEFAULT_LAYER_STORE

    mount_binary: str = "mount"
    umount_binary: str = "umount"

    @property
    def resolved_metadata_file(self) -> str:
        """Metadata database path, derived from containerd_root when unset."""
        if self.metadata_file:
            return self.metadata_file
        return os.path.join(self.containerd_root, METADATA_PLUGIN_DIR, METADATA_FILENAME)
