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
Parsers for Docker's on-disk JSON configuration files.

Container configuration exists in two generations (config.json and
config.v2.json). Each generation has its own decoder; the newer one
wins when both are present for a container.
"""
import json
from typing import Any, Dict, Iterable, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..MODELS.container_record import ContainerRecord, ContainerSchema
from ..MODELS.image_record import ImageContentSummary
from ..UTILS.timestamps import Timestamp
from ..errors import SchemaError

Payload = Union[bytes, str]


class _DockerJSON(BaseModel):
    # Newer runtimes add fields; anything unmodeled is dropped
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# config.v2.json

class _StateV2(_DockerJSON):
    running: bool = Field(False, alias="Running")
    pid: int = Field(0, alias="Pid")
    started_at: Timestamp = Field(None, alias="StartedAt")
    finished_at: Timestamp = Field(None, alias="FinishedAt")


class _RunConfigV2(_DockerJSON):
    hostname: str = Field("", alias="Hostname")
    exposed_ports: Optional[Dict[str, Any]] = Field(None, alias="ExposedPorts")
    labels: Optional[Dict[str, str]] = Field(None, alias="Labels")


class ContainerConfigV2(_DockerJSON):
    """
    Decoder for config.v2.json (Docker 1.10 and later).
    """
    id: str = Field(alias="ID")
    created: Timestamp = Field(None, alias="Created")
    path: str = Field("", alias="Path")
    args: Optional[List[str]] = Field(None, alias="Args")
    config: _RunConfigV2 = Field(default_factory=_RunConfigV2, alias="Config")
    state: _StateV2 = Field(default_factory=_StateV2, alias="State")
    image: str = Field("", alias="Image")
    name: str = Field("", alias="Name")
    driver: str = Field("", alias="Driver")

    def to_record(self) -> ContainerRecord:
        return ContainerRecord(
            id=self.id,
            created_at=self.created,
            image=self.image,
            driver=self.driver,
            hostname=self.config.hostname,
            exposed_ports=frozenset(self.config.exposed_ports or {}),
            running=self.state.running,
            runtime_name=self.name,
            schema_version=ContainerSchema.V2,
            labels=self.config.labels or {},
            pid=self.state.pid,
            started_at=self.state.started_at,
            finished_at=self.state.finished_at,
            path=self.path,
            args=self.args or [],
        )


# config.json (legacy)

class _StateV1(_DockerJSON):
    running: bool = Field(False, alias="Running")
    pid: int = Field(0, alias="Pid")
    started_at: Timestamp = Field(None, alias="StartedAt")


class _RunConfigV1(_DockerJSON):
    hostname: str = Field("", alias="Hostname")
    port_specs: Optional[List[str]] = Field(None, alias="PortSpecs")
    exposed_ports: Optional[Dict[str, Any]] = Field(None, alias="ExposedPorts")


class ContainerConfigV1(_DockerJSON):
    """
    Decoder for the legacy config.json. Early releases published
    ports as PortSpecs strings ("8080:80", "53/udp") rather than an
    ExposedPorts mapping, and did not always record the driver.
    """
    id: str = Field(alias="ID")
    created: Timestamp = Field(None, alias="Created")
    path: str = Field("", alias="Path")
    args: Optional[List[str]] = Field(None, alias="Args")
    config: _RunConfigV1 = Field(default_factory=_RunConfigV1, alias="Config")
    state: _StateV1 = Field(default_factory=_StateV1, alias="State")
    image: str = Field("", alias="Image")
    name: str = Field("", alias="Name")
    driver: str = Field("", alias="Driver")

    def exposed_ports(self) -> frozenset:
        ports = set(self.config.exposed_ports or {})
        for spec in self.config.port_specs or []:
            # "[hostip:]hostport:containerport[/proto]" -> containerport/proto
            port = spec.rsplit(":", 1)[-1]
            if "/" not in port:
                port = f"{port}/tcp"
            ports.add(port)
        return frozenset(ports)

    def to_record(self) -> ContainerRecord:
        return ContainerRecord(
            id=self.id,
            created_at=self.created,
            image=self.image,
            driver=self.driver,
            hostname=self.config.hostname,
            exposed_ports=self.exposed_ports(),
            running=self.state.running,
            runtime_name=self.name,
            schema_version=ContainerSchema.V1,
            pid=self.state.pid,
            started_at=self.state.started_at,
            path=self.path,
            args=self.args or [],
        )


# image/<driver>/repositories.json

class RepositoryIndex(_DockerJSON):
    repositories: Optional[Dict[str, Dict[str, str]]] = Field(None, alias="Repositories")


class ConfigParser:
    """
    Decodes configuration bytes into the canonical models.

    The parser never touches the filesystem; callers read the bytes and
    may pass the source path so errors can name the artifact.
    """
    CONTAINER_DECODERS: Dict[ContainerSchema, Type[_DockerJSON]] = {
        ContainerSchema.V2: ContainerConfigV2,
        ContainerSchema.V1: ContainerConfigV1,
    }

    # Highest precedence first
    CONTAINER_PRECEDENCE = (ContainerSchema.V2, ContainerSchema.V1)

    @classmethod
    def select_container_schema(cls, available: Iterable[ContainerSchema]) -> Optional[ContainerSchema]:
        """
        Picks the schema generation to read when several are on disk.

        :param available: Generations whose files exist for one container.
        :return: The newest available generation, or None.
        """
        available = set(available)
        for schema in cls.CONTAINER_PRECEDENCE:
            if schema in available:
                return schema
        return None

    def parse_container(self, data: Payload, schema: ContainerSchema = ContainerSchema.V2,
                        source: Optional[str] = None) -> ContainerRecord:
        """
        Decodes one container configuration file.

        :param data: Raw file contents.
        :param schema: Generation the file was stored as.
        :param source: Path of the file, for error reporting.
        :return: The canonical ContainerRecord.
        :raises SchemaError: If the bytes do not decode against the schema.
        """
        decoder = self.CONTAINER_DECODERS[schema]
        config = self._decode(decoder, data, source, f"container configuration {schema.value}")
        return config.to_record()

    def parse_image_content(self, data: Payload, source: Optional[str] = None) -> ImageContentSummary:
        """
        Decodes an image content summary from imagedb/content.
        """
        return self._decode(ImageContentSummary, data, source, "image content summary")

    def parse_repositories(self, data: Payload, source: Optional[str] = None) -> Dict[str, Dict[str, str]]:
        """
        Decodes a repositories.json index into {name: {tag: digest}}.
        """
        index = self._decode(RepositoryIndex, data, source, "image repository index")
        return index.repositories or {}

    @staticmethod
    def _load_json(data: Payload, source: Optional[str], what: str) -> Dict[str, Any]:
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            document = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SchemaError(f"unmarshalling {what}: {e}", path=source)
        if not isinstance(document, dict):
            raise SchemaError(f"unmarshalling {what}: expected a JSON object", path=source)
        return document

    def _decode(self, model: Type[BaseModel], data: Payload, source: Optional[str], what: str):
        document = self._load_json(data, source, what)
        try:
            return model.model_validate(document)
        except ValidationError as e:
            raise SchemaError(f"unmarshalling {what}: {e.error_count()} invalid field(s): {e}", path=source)
