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
Exception hierarchy for the explorer.

Every error keeps the artifact path and/or identifier it concerns so a
caller can point the analyst at the offending file.
"""
from typing import Optional


class ExplorerError(Exception):
    """Base class for all explorer failures."""

    def __init__(self, message: str, path: Optional[str] = None, identifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.identifier = identifier

    def __str__(self) -> str:
        details = []
        if self.identifier:
            details.append(f"id={self.identifier}")
        if self.path:
            details.append(f"path={self.path}")
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


# Metadata store lifecycle

class StoreError(ExplorerError):
    """Base class for metadata store failures."""


class StoreUnavailable(StoreError):
    """The database file is missing or is not a bolt database."""


class StoreCorrupt(StoreError):
    """The database structure is damaged."""


class StoreClosed(StoreError):
    """The store was used after close()."""


# Configuration and repositories

class SchemaError(ExplorerError):
    """Configuration bytes do not decode against a recognized schema."""


class RepositoryUnavailable(ExplorerError):
    """The image repository root or an index inside it is missing."""


# Layer resolution

class LayerResolutionError(ExplorerError):
    """Base class for layer chain resolution failures."""


class ContainerNotFound(LayerResolutionError):
    pass


class MountIDUnavailable(LayerResolutionError):
    pass


class LayerChainUnavailable(LayerResolutionError):
    pass


class UnsupportedStorageDriver(LayerResolutionError):
    pass


# Mounting

class MountError(ExplorerError):
    """The host mount facility failed."""

    def __init__(self, message: str, path: Optional[str] = None, identifier: Optional[str] = None,
                 output: str = "", status: Optional[int] = None):
        super().__init__(message, path=path, identifier=identifier)
        self.output = output
        self.status = status


class InvalidLowerPath(MountError):
    pass


class MountPermissionDenied(MountError):
    pass


# Misc

class NotSupportedError(ExplorerError):
    """Raised by operations that this explorer does not implement."""


class OperationCancelled(ExplorerError):
    pass
