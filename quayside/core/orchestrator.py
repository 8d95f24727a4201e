from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import List, Optional

import anyio

from quayside.config import Config
from quayside.core.containers import ContainerManager
from quayside.core.images import ImagePuller
from quayside.core.tasks import TaskManager
from quayside.core.transport import Handle, connect
from quayside.errors import (
	QYCancelled,
	QYDuplicateContainerError,
	QYError,
	QYInvalidSpecError,
	QYNotFoundError,
	QYPullError,
	QYTaskExitError,
	QYWaitTimeout,
)
from quayside.types import ContainerSpec, ImageReference, Platform, WorkflowResult, WorkflowStep, parse_reference

DEFAULT_ARGS = ("/bin/sh", "-c", "echo 'Hello'")


@dataclass
class _Progress:
	step: Optional[WorkflowStep] = None
	container: bool = False
	task: bool = False
	finished: bool = False


class Orchestrator:
	"""Runs a container to completion: pull, create, start, wait, capture, delete.

	Each step is gated on the previous one. When a step fails, whatever was
	created so far is torn down in reverse order, shielded from cancellation
	and bounded by ``cleanup_timeout``. Errors are reported on the returned
	``WorkflowResult``; only cancellation of the caller's own scope propagates.

	A handle passed in stays open; one opened by the orchestrator is closed by
	``close()`` or on leaving ``async with``.
	"""

	def __init__(
		self,
		handle: Optional[Handle] = None,
		config: Optional[Config] = None,
		*,
		logger: Optional[logging.Logger] = None,
		platform: Optional[Platform] = None,
		images: Optional[ImagePuller] = None,
		containers: Optional[ContainerManager] = None,
		tasks: Optional[TaskManager] = None,
	):
		self.config = config or Config.load()
		self.handle = handle
		self._owns_handle = handle is None
		self.log = logger or logging.getLogger(__name__)
		self.platform = platform
		self.images = images or ImagePuller(self.config.snapshotter)
		self.containers = containers or ContainerManager()
		self.tasks = tasks or TaskManager(self.config.scratch_dir, self.config.keep_stdio)

	async def connect(self) -> Handle:
		if self.handle is None or self.handle.closed:
			self.handle = await connect(config=self.config)
			self._owns_handle = True
		return self.handle

	async def close(self) -> None:
		if self._owns_handle and self.handle is not None:
			await self.handle.close()

	async def __aenter__(self) -> "Orchestrator":
		await self.connect()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.close()

	def new_container_id(self) -> str:
		return f"{self.config.id_prefix}-{uuid.uuid4().hex[:12]}"

	async def run(
		self,
		image_ref: ImageReference | str,
		spec: Optional[ContainerSpec] = None,
		*,
		namespace: Optional[str] = None,
		timeout: Optional[float] = None,
		cancel: Optional[anyio.Event] = None,
	) -> WorkflowResult:
		ns = namespace or self.config.namespace
		if spec is None:
			spec = ContainerSpec(id="", image=str(image_ref), args=DEFAULT_ARGS, runtime=self.config.runtime)
		try:
			ref = image_ref if isinstance(image_ref, ImageReference) else parse_reference(image_ref)
			spec = replace(spec, id=spec.id or self.new_container_id(), image=str(ref)).validate()
		except QYInvalidSpecError as e:
			self.log.error("Rejected workflow for %s: %s", image_ref, e)
			return WorkflowResult(container_id=spec.id, image=str(image_ref), namespace=ns, error=e)

		result = WorkflowResult(container_id=spec.id, image=str(ref), namespace=ns)
		try:
			handle = await self.connect()
		except QYError as e:
			self.log.error("Cannot reach the runtime daemon: %s", e)
			result.error = e
			return result
		wait_timeout = timeout if timeout is not None else self.config.wait_timeout
		progress = _Progress()
		cancelled = False

		try:
			async with anyio.create_task_group() as tg:
				if cancel is not None:
					async def _watch_cancel() -> None:
						nonlocal cancelled
						await cancel.wait()
						if not progress.finished:
							cancelled = True
							tg.cancel_scope.cancel()

					tg.start_soon(_watch_cancel)
				try:
					await self._steps(handle, ns, ref, spec, wait_timeout, result, progress)
				except QYError as e:
					result.error = e
					result.failed_step = progress.step
					self.log.error("Workflow for %s failed at %s: %s", spec.id, progress.step.value if progress.step else "start", e)
				progress.finished = True
				tg.cancel_scope.cancel()
			if cancelled:
				step = progress.step.value if progress.step else "start"
				result.error = QYCancelled(f"workflow cancelled during {step}", operation=step, container_id=spec.id)
				result.failed_step = progress.step
				self.log.warning("Workflow for %s cancelled during %s", spec.id, step)
		finally:
			if progress.container or progress.task:
				result.cleanup_errors.extend(await self._cleanup(handle, ns, spec.id, task=progress.task, container=progress.container))

		if result.error is None and result.exit_status not in (None, 0):
			result.error = QYTaskExitError(f"task {spec.id} exited with status {result.exit_status}", result.exit_status, operation="wait_task", container_id=spec.id)
		return result

	async def _steps(self, handle: Handle, ns: str, ref: ImageReference, spec: ContainerSpec, timeout: Optional[float], result: WorkflowResult, progress: _Progress) -> None:
		progress.step = WorkflowStep.PULL
		await self._pull(handle, ns, ref)
		result.completed.append(progress.step)

		progress.step = WorkflowStep.CREATE_CONTAINER
		await self._create_container(handle, ns, spec)
		progress.container = True
		result.completed.append(progress.step)

		progress.step = WorkflowStep.CREATE_TASK
		stdio = await self.tasks.allocate_stdio(ns, spec.id)
		# a cancelled create may still have reached the daemon
		progress.task = True
		task = await self.tasks.create(handle, ns, spec.id, stdio, spec.terminal, owns_stdio=True)
		result.completed.append(progress.step)

		progress.step = WorkflowStep.START_TASK
		await self.tasks.start(handle, ns, spec.id)
		result.completed.append(progress.step)

		progress.step = WorkflowStep.WAIT_TASK
		result.exit_status = await self.tasks.wait(handle, ns, spec.id, timeout)
		result.completed.append(progress.step)

		progress.step = WorkflowStep.CAPTURE_OUTPUT
		result.stdout, result.stderr = await self.tasks.read_output(task)
		result.completed.append(progress.step)

		progress.step = WorkflowStep.DELETE_TASK
		await self.tasks.delete(handle, ns, spec.id)
		progress.task = False
		result.completed.append(progress.step)

		progress.step = WorkflowStep.DELETE_CONTAINER
		await self.containers.delete(handle, ns, spec.id)
		progress.container = False
		result.completed.append(progress.step)

	async def _pull(self, handle: Handle, ns: str, ref: ImageReference) -> None:
		if self.config.pull_policy == "missing" and await self.images.exists(handle, ns, ref):
			self.log.info("Image %s already present, not pulling", ref)
			return
		delay = self.config.pull_backoff
		attempts = self.config.pull_attempts
		for attempt in range(1, attempts + 1):
			try:
				await self.images.pull(handle, ns, ref, self.platform)
				return
			except QYPullError as e:
				if attempt >= attempts:
					raise
				self.log.warning("Pull of %s failed (attempt %d/%d), retrying in %.1fs: %s", ref, attempt, attempts, delay, e)
			await anyio.sleep(delay)
			delay *= 2

	async def _create_container(self, handle: Handle, ns: str, spec: ContainerSpec) -> None:
		try:
			await self.containers.create(handle, ns, spec, self.platform)
			return
		except QYDuplicateContainerError:
			if self.config.on_conflict != "replace":
				raise
		self.log.warning("Replacing existing container %s", spec.id)
		errors = await self._teardown(handle, ns, spec.id, task=True, container=True)
		if errors:
			raise errors[0]
		await self.containers.create(handle, ns, spec, self.platform)

	async def cleanup(self, handle: Optional[Handle], namespace: str, container_id: str) -> List[QYError]:
		"""Tear down a leftover task and container; missing pieces are fine."""
		handle = handle or await self.connect()
		return await self._cleanup(handle, namespace, container_id, task=True, container=True)

	async def _cleanup(self, handle: Handle, ns: str, container_id: str, *, task: bool, container: bool) -> List[QYError]:
		errors: List[QYError] = []
		with anyio.move_on_after(self.config.cleanup_timeout, shield=True) as scope:
			errors = await self._teardown(handle, ns, container_id, task=task, container=container)
		if scope.cancelled_caught:
			err = QYWaitTimeout(f"cleanup did not finish within {self.config.cleanup_timeout}s", operation="cleanup", container_id=container_id)
			self.log.error("%s", err)
			errors.append(err)
		return errors

	async def _teardown(self, handle: Handle, ns: str, container_id: str, *, task: bool, container: bool) -> List[QYError]:
		errors: List[QYError] = []
		if task:
			try:
				await self.tasks.stop(handle, ns, container_id, timeout=self.config.stop_timeout)
				await self.tasks.delete(handle, ns, container_id)
			except QYNotFoundError as e:
				self.log.debug("Cleanup: task %s already gone: %s", container_id, e)
			except QYError as e:
				self.log.warning("Cleanup: could not remove task %s: %s", container_id, e)
				errors.append(e)
			finally:
				self.tasks.discard(ns, container_id)
		if container:
			try:
				await self.containers.delete(handle, ns, container_id)
			except QYNotFoundError as e:
				self.log.debug("Cleanup: container %s already gone: %s", container_id, e)
			except QYError as e:
				self.log.warning("Cleanup: could not remove container %s: %s", container_id, e)
				errors.append(e)
		if not errors:
			self.log.debug("Cleaned up %s", container_id)
		return errors
