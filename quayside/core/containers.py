from __future__ import annotations

import logging
from typing import Optional

from quayside.core.images import host_platform
from quayside.core.transport import Handle
from quayside.errors import (
	QYAlreadyExistsError,
	QYContainerBusyError,
	QYContainerNotFoundError,
	QYDuplicateContainerError,
	QYFailedPreconditionError,
	QYNotFoundError,
)
from quayside.types import Container, ContainerSpec, Platform

logger = logging.getLogger(__name__)


class ContainerManager:
	"""Creates and deletes container records."""

	async def create(self, handle: Handle, namespace: str, spec: ContainerSpec, platform: Optional[Platform] = None) -> Container:
		spec.validate()
		try:
			container = await handle.runtime.create_container(namespace, spec, platform or host_platform())
		except QYAlreadyExistsError as e:
			raise QYDuplicateContainerError(f"container {spec.id} already exists in namespace {namespace}", operation="create_container", container_id=spec.id, cause=e) from e
		logger.info("Created container %s (%s)", container.id, container.image)
		return container

	async def get(self, handle: Handle, namespace: str, container_id: str) -> Container:
		try:
			return await handle.runtime.get_container(namespace, container_id)
		except QYContainerNotFoundError:
			raise
		except QYNotFoundError as e:
			raise QYContainerNotFoundError(f"container {container_id} not found in namespace {namespace}", operation="get_container", container_id=container_id, cause=e) from e

	async def exists(self, handle: Handle, namespace: str, container_id: str) -> bool:
		try:
			await handle.runtime.get_container(namespace, container_id)
			return True
		except QYNotFoundError:
			return False

	async def delete(self, handle: Handle, namespace: str, container_id: str) -> None:
		runtime = handle.runtime
		await self.get(handle, namespace, container_id)
		try:
			await runtime.task_state(namespace, container_id)
		except QYNotFoundError:
			pass
		else:
			raise QYContainerBusyError(f"container {container_id} still has a task", operation="delete_container", container_id=container_id)
		try:
			await runtime.delete_container(namespace, container_id)
		except QYFailedPreconditionError as e:
			raise QYContainerBusyError(e.args[0], operation="delete_container", container_id=container_id, cause=e) from e
		logger.info("Deleted container %s", container_id)
