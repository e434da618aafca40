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
Inventory of containers and images from Docker's directory layout.
"""

import logging
import os
from typing import List, Optional, Set, Tuple

from pydantic import ValidationError

from ..MODELS.container_record import ContainerRecord, ContainerSchema
from ..MODELS.image_record import ImageContentSummary, ImageRecord, split_digest
from ..PARSERS.config_parser import ConfigParser
from ..UTILS.cancellation import Context, ensure_context
from ..errors import ContainerNotFound, RepositoryUnavailable, SchemaError

logger = logging.getLogger(__name__)

CONTAINERS_DIR_NAME = "containers"
REPOSITORIES_DIR_NAME = "image"
REPOSITORIES_FILE_NAME = "repositories.json"


def _subdirectories(path: str) -> List[str]:
    return sorted(
        entry.name for entry in os.scandir(path)
        if entry.is_dir(follow_symlinks=False)
    )


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class Catalog:
    """
    Enumerates containers and images under a Docker root directory.

    Container listings are strict: a malformed config.v2.json aborts the
    listing, since it points at a damaged acquisition. Missing files are
    skipped with a log entry.
    """

    def __init__(self, docker_root: str, layer_store: str = "overlay2",
                 parser: Optional[ConfigParser] = None):
        """
        Initializes the catalog.

        :param docker_root: Docker state directory, e.g. /var/lib/docker.
        :param layer_store: Storage driver whose image content is read for enrichment.
        :param parser: Configuration parser to use.
        """
        self.docker_root = docker_root
        self.layer_store = layer_store
        self.parser = parser or ConfigParser()

    @property
    def containers_dir(self) -> str:
        return os.path.join(self.docker_root, CONTAINERS_DIR_NAME)

    @property
    def repositories_dir(self) -> str:
        return os.path.join(self.docker_root, REPOSITORIES_DIR_NAME)

    def container_ids(self) -> List[str]:
        """
        Returns the names of the directories under containers/.
        """
        if not os.path.isdir(self.containers_dir):
            logger.warning("containers directory %s not found", self.containers_dir)
            return []
        return _subdirectories(self.containers_dir)

    def _available_schemas(self, container_dir: str) -> Set[ContainerSchema]:
        return {
            schema for schema in ContainerSchema
            if os.path.isfile(os.path.join(container_dir, schema.value))
        }

    def list_containers(self, ctx: Optional[Context] = None) -> List[ContainerRecord]:
        """
        Lists every container whose current-generation configuration exists.

        Raises:
            SchemaError: If a config.v2.json cannot be decoded.
            OperationCancelled: If ctx is cancelled.
        """
        ctx = ensure_context(ctx)
        records = []

        for container_id in self.container_ids():
            ctx.check()
            container_dir = os.path.join(self.containers_dir, container_id)
            schema = self.parser.select_container_schema(self._available_schemas(container_dir))

            if schema is ContainerSchema.V2:
                records.append(self._load_container(container_dir, container_id))
            elif schema is ContainerSchema.V1:
                logger.warning("container %s only has a legacy %s configuration; skipping",
                               container_id, ContainerSchema.V1.value)
            else:
                logger.error("configuration file not found for container %s", container_id)

        return records

    def get_container(self, container_id: str) -> ContainerRecord:
        """
        Loads one container's configuration.

        Raises:
            ContainerNotFound: If the container or its config.v2.json is missing.
            SchemaError: If the configuration cannot be decoded.
        """
        container_dir = os.path.join(self.containers_dir, container_id)
        logger.debug("container directory %s", container_dir)
        if not os.path.isdir(container_dir):
            raise ContainerNotFound("container does not exist", path=container_dir, identifier=container_id)

        config_path = os.path.join(container_dir, ContainerSchema.V2.value)
        if not os.path.isfile(config_path):
            raise ContainerNotFound(
                f"container config file {ContainerSchema.V2.value} does not exist",
                path=config_path, identifier=container_id,
            )
        return self._load_container(container_dir, container_id)

    def _load_container(self, container_dir: str, container_id: str) -> ContainerRecord:
        config_path = os.path.join(container_dir, ContainerSchema.V2.value)
        try:
            data = _read_bytes(config_path)
        except OSError as e:
            raise SchemaError(f"reading container config file: {e.strerror}",
                              path=config_path, identifier=container_id)

        try:
            record = self.parser.parse_container(data, ContainerSchema.V2, source=config_path)
        except SchemaError as e:
            e.identifier = container_id
            raise

        if record.id != container_id:
            logger.warning("container directory %s holds configuration for %s", container_id, record.id)
        return record

    def list_images(self, ctx: Optional[Context] = None) -> List[ImageRecord]:
        """
        Lists one ImageRecord per (name, digest) binding in every
        storage driver's repositories.json.

        Raises:
            RepositoryUnavailable: If image/ or a driver's index is missing.
            SchemaError: If an index cannot be decoded or holds an invalid digest.
            OperationCancelled: If ctx is cancelled.
        """
        ctx = ensure_context(ctx)
        if not os.path.isdir(self.repositories_dir):
            raise RepositoryUnavailable("valid image repositories directory not found",
                                        path=self.repositories_dir)

        images = []
        seen: Set[Tuple[str, str]] = set()

        for storage_name in _subdirectories(self.repositories_dir):
            ctx.check()
            storage_dir = os.path.join(self.repositories_dir, storage_name)
            repositories_file = os.path.join(storage_dir, REPOSITORIES_FILE_NAME)
            logger.debug("image repository file %s (storage %s)", repositories_file, storage_name)

            try:
                data = _read_bytes(repositories_file)
            except OSError as e:
                raise RepositoryUnavailable(f"failed to read repository file: {e.strerror}",
                                            path=repositories_file, identifier=storage_name)

            repositories = self.parser.parse_repositories(data, source=repositories_file)

            for tags in repositories.values():
                for name, digest in tags.items():
                    ctx.check()
                    if (name, digest) in seen:
                        continue
                    seen.add((name, digest))
                    images.append(self._image_record(storage_name, storage_dir, name, digest, repositories_file))

        return images

    def _image_record(self, storage_name: str, storage_dir: str, name: str, digest: str,
                      repositories_file: str) -> ImageRecord:
        try:
            record = ImageRecord(name=name, digest=digest, storage_driver=storage_name)
        except ValidationError as e:
            raise SchemaError(f"invalid digest {digest!r} for image {name}: {e.error_count()} error(s)",
                              path=repositories_file, identifier=name)

        if storage_name != self.layer_store:
            return record

        try:
            content = self.read_image_content(storage_dir, digest)
        except (OSError, SchemaError) as e:
            logger.error("reading image content file for %s: %s", name, e)
            return record
        return record.model_copy(update={"created_at": content.created})

    def read_image_content(self, storage_dir: str, digest: str) -> ImageContentSummary:
        """
        Reads image/<driver>/imagedb/content/<algorithm>/<hex>.

        Raises:
            SchemaError: If the digest or the file content is invalid.
            OSError: If the file cannot be read.
        """
        try:
            algorithm, hex_value = split_digest(digest)
        except ValueError as e:
            raise SchemaError(str(e), identifier=digest)

        content_file = os.path.join(storage_dir, "imagedb", "content", algorithm, hex_value)
        logger.debug("reading docker image content file %s", content_file)
        data = _read_bytes(content_file)
        return self.parser.parse_image_content(data, source=content_file)
