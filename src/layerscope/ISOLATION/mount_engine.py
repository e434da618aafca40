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
Read-only overlay mounts of reconstructed container filesystems.
The host mount facility sits behind MountFacility so it can be swapped
for a direct system call or a test double.
"""

import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Type

import psutil

from ..MODELS.layer_chain import LayerChain
from ..UTILS.cancellation import Context, ensure_context
from ..errors import InvalidLowerPath, MountError, MountPermissionDenied

logger = logging.getLogger(__name__)


class MountFacility(ABC):
    """Host side of mounting: runs commands and reads the mount table."""

    @abstractmethod
    def invoke(self, args: Sequence[str]) -> Tuple[str, int]:
        """
        Runs a command.

        Args:
            args: Program and arguments.

        Returns:
            (combined stdout/stderr, exit status).
        """

    @abstractmethod
    def is_mounted(self, path: str) -> bool:
        """Whether a filesystem is mounted at path."""


class SubprocessMountFacility(MountFacility):
    """
    Runs the host's mount(8)/umount(8) binaries.
    """

    def invoke(self, args: Sequence[str]) -> Tuple[str, int]:
        try:
            result = subprocess.run(
                list(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                shell=False,
            )
        except OSError as e:
            raise MountError(f"executing {args[0]}: {e.strerror}", path=args[0])
        return result.stdout or "", result.returncode

    def is_mounted(self, path: str) -> bool:
        target = os.path.realpath(path)
        for partition in psutil.disk_partitions(all=True):
            if os.path.realpath(partition.mountpoint) == target:
                return True
        return False


@dataclass(frozen=True)
class MountErrorRule:
    """
    Maps a failed mount invocation to an error type. A rule matches when
    every criterion it sets (status, pattern) matches.
    """
    error: Type[MountError]
    message: str
    status: Optional[int] = None
    pattern: Optional[str] = None

    def matches(self, status: int, output: str) -> bool:
        if self.status is not None and status != self.status:
            return False
        if self.pattern is not None and not re.search(self.pattern, output, re.IGNORECASE):
            return False
        return True


# Checked in order; first match wins
MOUNT_ERROR_RULES: Tuple[MountErrorRule, ...] = (
    MountErrorRule(
        MountPermissionDenied,
        "mounting requires root privileges",
        pattern=r"only root can|permission denied|operation not permitted",
    ),
    # util-linux mount exits 32 on mount failure, which for overlay
    # almost always means a lowerdir entry does not exist
    MountErrorRule(
        InvalidLowerPath,
        "invalid lowerdir path. Use --debug to view lowerdir path",
        status=32,
    ),
)


def classify_mount_failure(status: int, output: str, target: str,
                           rules: Sequence[MountErrorRule] = MOUNT_ERROR_RULES) -> MountError:
    """
    Converts a non-zero mount status into the matching MountError.
    """
    output = output.strip()
    for rule in rules:
        if rule.matches(status, output):
            return rule.error(rule.message, path=target, output=output, status=status)
    return MountError(f"executing mount command (exit status {status}): {output}",
                      path=target, output=output, status=status)


class MountEngine:
    """
    Mounts and unmounts LayerChains as read-only overlay filesystems.

    Mounts belong to the caller; the engine does not track them.
    """

    def __init__(self, facility: Optional[MountFacility] = None,
                 mount_binary: str = "mount", umount_binary: str = "umount"):
        self.facility = facility or SubprocessMountFacility()
        self.mount_binary = mount_binary
        self.umount_binary = umount_binary

    def build_mount_args(self, chain: LayerChain, target: str) -> List[str]:
        options = f"ro,lowerdir={chain.lowerdir_option}"
        return [self.mount_binary, "-t", "overlay", "overlay", "-o", options, target]

    def mount(self, chain: LayerChain, target: str, ctx: Optional[Context] = None) -> None:
        """
        Mounts a container's layers read-only at target.

        Args:
            chain: Resolved layers of the container.
            target: Existing directory to mount on.
            ctx: Cancellation context.

        Raises:
            InvalidLowerPath: If the host rejects the lowerdir list.
            MountPermissionDenied: If the caller lacks privileges.
            MountError: For any other failure.
        """
        ensure_context(ctx).check()
        if not os.path.isdir(target):
            raise MountError("mount point does not exist or is not a directory",
                             path=target, identifier=chain.container_id)

        args = self.build_mount_args(chain, target)
        logger.debug("mount arguments %s", args)
        output, status = self.facility.invoke(args)

        if status != 0:
            logger.error("mount command for container %s exited %d: %s -t overlay overlay -o ro,lowerdir=... %s",
                         chain.container_id, status, self.mount_binary, target)
            logger.debug("lowerdir for container %s: %s", chain.container_id, chain.lowerdir_option)
            error = classify_mount_failure(status, output, target)
            error.identifier = chain.container_id
            raise error

        if output:
            logger.debug("mount command output: %s", output.strip())
        logger.info("mounted container %s at %s", chain.container_id, target)

    def unmount(self, target: str, ctx: Optional[Context] = None) -> None:
        """
        Unmounts target. Does nothing if nothing is mounted there.

        Raises:
            MountError: If umount fails.
        """
        ensure_context(ctx).check()
        if not self.facility.is_mounted(target):
            logger.debug("nothing mounted at %s", target)
            return

        output, status = self.facility.invoke([self.umount_binary, target])
        if status != 0:
            raise MountError(f"executing umount command (exit status {status}): {output.strip()}",
                             path=target, output=output.strip(), status=status)
        logger.info("unmounted %s", target)
