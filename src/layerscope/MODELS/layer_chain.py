"""
Models for a container's resolved overlay layer directories.
"""
from typing import List
from pydantic import BaseModel, ConfigDict


class LayerChain(BaseModel):
    """
    Overlay directories backing one container.

    lower_dirs keeps the order of the driver's lower file; the union
    mount relies on it for precedence.
    """
    model_config = ConfigDict(frozen=True)

    container_id: str
    mount_id: str
    driver: str
    lower_dirs: List[str] = []
    upper_dir: str
    work_dir: str

    @property
    def lowerdir_option(self) -> str:
        """
        Value of the overlay 'lowerdir' option for a read-only view.
        The upper directory is stacked last as an extra read-only layer.
        """
        return ":".join(list(self.lower_dirs) + [self.upper_dir])
