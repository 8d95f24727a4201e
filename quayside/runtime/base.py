"""Base class for runtime daemon backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from quayside.types import (
    Container,
    ContainerSpec,
    ImageInfo,
    Platform,
    StdioPaths,
    TaskState,
    TransferDescriptor,
)


class RuntimeBackend(ABC):
    """Async view of a container runtime daemon's API.

    Implementations raise the generic errors from ``quayside.errors``
    (not found, already exists, failed precondition, connection, pull);
    the lifecycle managers refine them.
    """

    name: str = "abstract"

    def __init__(self, address: str):
        self.address = address

    @abstractmethod
    async def ping(self) -> str:
        """Check the daemon answers; return its version string."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying channel."""
        pass

    @abstractmethod
    async def pull_image(self, namespace: str, transfer: TransferDescriptor) -> None:
        """Fetch and unpack an image into the daemon's store."""
        pass

    @abstractmethod
    async def image_exists(self, namespace: str, name: str) -> bool:
        """Check whether an image record exists."""
        pass

    @abstractmethod
    async def list_images(self, namespace: str) -> List[ImageInfo]:
        """List image records."""
        pass

    @abstractmethod
    async def create_container(self, namespace: str, spec: ContainerSpec, platform: Platform) -> Container:
        """Create a container record from a validated spec."""
        pass

    @abstractmethod
    async def get_container(self, namespace: str, container_id: str) -> Container:
        """Load a container record."""
        pass

    @abstractmethod
    async def delete_container(self, namespace: str, container_id: str) -> None:
        """Delete a container record and whatever storage it holds."""
        pass

    @abstractmethod
    async def create_task(self, namespace: str, container_id: str, stdio: StdioPaths, terminal: bool = False) -> int:
        """Create the task bound to a container and return its pid (0 if not yet known)."""
        pass

    @abstractmethod
    async def start_task(self, namespace: str, container_id: str) -> int:
        """Start a created task and return its pid."""
        pass

    @abstractmethod
    async def task_state(self, namespace: str, container_id: str) -> TaskState:
        """Report the daemon's view of the task state."""
        pass

    @abstractmethod
    async def wait_task(self, namespace: str, container_id: str) -> int:
        """Block until the task exits and return its exit status."""
        pass

    @abstractmethod
    async def kill_task(self, namespace: str, container_id: str, signal: int) -> None:
        """Signal the task's init process."""
        pass

    @abstractmethod
    async def delete_task(self, namespace: str, container_id: str) -> Optional[int]:
        """Delete an exited (or never started) task; return its exit status."""
        pass

    async def __aenter__(self) -> "RuntimeBackend":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
