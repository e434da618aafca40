"""
Models representing containers reconstructed from their configuration files.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from pydantic import BaseModel, ConfigDict


class ContainerSchema(str, Enum):
    """
    On-disk container configuration generations, oldest first.
    """
    V1 = "config.json"
    V2 = "config.v2.json"


class ContainerRecord(BaseModel):
    """
    Canonical view of one container, independent of the schema
    generation it was decoded from.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: Optional[datetime] = None
    image: str = ""
    driver: str = ""
    hostname: str = ""
    exposed_ports: FrozenSet[str] = frozenset()
    running: bool = False
    runtime_name: str = ""

    schema_version: ContainerSchema = ContainerSchema.V2
    labels: Dict[str, str] = {}
    pid: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    path: str = ""
    args: List[str] = []
