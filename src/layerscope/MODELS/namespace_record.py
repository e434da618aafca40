"""
Models for namespaces read from the containerd metadata store.
"""
from pydantic import BaseModel, ConfigDict


class NamespaceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
