"""
Models for images bound in the repository index and their content summaries.
"""
from datetime import datetime
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..UTILS.timestamps import Timestamp


def split_digest(digest: str) -> Tuple[str, str]:
    """
    Splits a content digest into algorithm and hex value.

    :param digest: Digest such as 'sha256:4a5b...'.
    :return: (algorithm, hex) tuple.
    :raises ValueError: If the digest is not exactly two colon-separated fields.
    """
    parts = digest.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"expecting two colon separated values in digest {digest!r}")
    return parts[0], parts[1]


class ImageRecord(BaseModel):
    """
    A (name, digest) binding found in a repository index.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    digest: str
    created_at: Optional[datetime] = None
    storage_driver: str = ""

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        split_digest(value)
        return value

    @property
    def algorithm(self) -> str:
        return split_digest(self.digest)[0]

    @property
    def hex(self) -> str:
        return split_digest(self.digest)[1]


class HistoryItem(BaseModel):
    """
    One build step recorded in an image's history.
    """
    created: Timestamp = None
    author: Optional[str] = None
    created_by: Optional[str] = None
    comment: Optional[str] = None
    empty_layer: bool = False


class RootFS(BaseModel):
    type: str = ""
    diff_ids: List[str] = []


class ImageContentSummary(BaseModel):
    """
    Content-addressed image configuration stored under
    image/<driver>/imagedb/content/<algorithm>/<hex>.
    """
    id: Optional[str] = None
    architecture: str = ""
    os: str = ""
    created: Timestamp = None
    comment: Optional[str] = None
    container: Optional[str] = None
    docker_version: Optional[str] = None
    history: List[HistoryItem] = []
    rootfs: RootFS = Field(default_factory=RootFS)
    parent: Optional[str] = None
