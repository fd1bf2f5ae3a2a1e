"""
Base transform interface.

Transforms enrich or rewrite the GPU batch in place between collection
and rendering.
"""

from abc import ABC, abstractmethod

from ..models.device import SystemInfo
from ..models.metric import Batch


class TransformError(Exception):
    """Raised when a transform cannot be created or fails to process a batch."""

    pass


class Transform(ABC):
    """Abstract base class for batch transforms."""

    @abstractmethod
    async def process(self, metrics: Batch, sys_info: SystemInfo | None) -> None:
        """
        Mutate the batch in place.

        Raises:
            TransformError: If the batch cannot be processed
        """
        pass

    @abstractmethod
    def name(self) -> str:
        """Name used in log and error messages."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name()!r})"
