from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from signal import SIGKILL, SIGTERM
from typing import Dict, Optional, Tuple

import anyio

from quayside.config import Config
from quayside.core.transport import Handle
from quayside.errors import (
	QYAlreadyExistsError,
	QYContainerNotFoundError,
	QYDuplicateTaskError,
	QYFailedPreconditionError,
	QYInvalidStateError,
	QYNotFoundError,
	QYRuntimeError,
	QYTaskStillRunningError,
	QYWaitTimeout,
)
from quayside.types import StdioPaths, TaskHandle, TaskState
from quayside.utils.fs import read_text, remove_files, touch

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class TaskManager:
	"""Drives a task through created -> running -> exited -> deleted.

	Bookkeeping (tracked handles, cached exit statuses, in-flight waits) lives
	on the manager and is local to the event loop that uses it. Concurrent
	``wait`` calls on one task share a single remote wait.
	"""

	def __init__(self, scratch_dir: Optional[Path | str] = None, keep_stdio: bool = False):
		self.scratch_dir = Path(scratch_dir) if scratch_dir else Config().scratch_dir
		self.keep_stdio = keep_stdio
		self._tasks: Dict[_Key, TaskHandle] = {}
		self._exits: Dict[_Key, int] = {}
		self._waits: Dict[_Key, anyio.Event] = {}

	def get(self, namespace: str, container_id: str) -> Optional[TaskHandle]:
		return self._tasks.get((namespace, container_id))

	async def allocate_stdio(self, namespace: str, container_id: str) -> StdioPaths:
		root = self.scratch_dir / namespace / container_id
		paths = StdioPaths(stdin=root / "stdin", stdout=root / "stdout", stderr=root / "stderr")
		await self._touch_all(paths, container_id)
		return paths

	async def _touch_all(self, paths: StdioPaths, container_id: str) -> None:
		try:
			for p in paths.paths():
				await touch(p)
		except OSError as e:
			raise QYRuntimeError(f"cannot prepare stdio files for {container_id}: {e}", operation="create_task", container_id=container_id, cause=e) from e

	async def create(self, handle: Handle, namespace: str, container_id: str, stdio: Optional[StdioPaths] = None, terminal: bool = False, *, owns_stdio: bool = False) -> TaskHandle:
		key = (namespace, container_id)
		known = self._tasks.get(key)
		if known is not None and known.state != TaskState.DELETED:
			raise QYDuplicateTaskError(f"task for {container_id} already exists", operation="create_task", container_id=container_id)
		paths = stdio or StdioPaths()
		await self._touch_all(paths, container_id)
		task = TaskHandle(namespace=namespace, container_id=container_id, stdio=paths, terminal=terminal, owns_stdio=owns_stdio)
		try:
			pid = await handle.runtime.create_task(namespace, container_id, paths, terminal)
		except QYAlreadyExistsError as e:
			self._release(task)
			raise QYDuplicateTaskError(f"task for {container_id} already exists", operation="create_task", container_id=container_id, cause=e) from e
		except QYNotFoundError as e:
			self._release(task)
			raise QYContainerNotFoundError(f"container {container_id} not found in namespace {namespace}", operation="create_task", container_id=container_id, cause=e) from e
		except BaseException:
			self._release(task)
			raise
		task.pid = pid or None
		self._tasks[key] = task
		self._exits.pop(key, None)
		logger.debug("Created task for %s (pid %s)", container_id, task.pid)
		return task

	async def start(self, handle: Handle, namespace: str, container_id: str) -> int:
		runtime = handle.runtime
		task = self._tasks.get((namespace, container_id))
		state = task.state if task is not None else await runtime.task_state(namespace, container_id)
		if state != TaskState.CREATED:
			raise QYInvalidStateError(f"task {container_id} is {state.value}, expected created", operation="start_task", container_id=container_id)
		try:
			pid = await runtime.start_task(namespace, container_id)
		except QYFailedPreconditionError as e:
			raise QYInvalidStateError(e.args[0], operation="start_task", container_id=container_id, cause=e) from e
		if task is not None:
			task.pid = pid or task.pid
			task.state = TaskState.RUNNING
		logger.info("Started task %s (pid %s)", container_id, pid)
		return pid

	async def state(self, handle: Handle, namespace: str, container_id: str) -> TaskState:
		key = (namespace, container_id)
		if key in self._exits:
			return TaskState.EXITED
		state = await handle.runtime.task_state(namespace, container_id)
		task = self._tasks.get(key)
		if task is not None and task.state != TaskState.EXITED:
			task.state = state
		return state

	async def wait(self, handle: Handle, namespace: str, container_id: str, timeout: Optional[float] = None) -> int:
		"""Wait for the task to exit and return its exit status.

		Raises ``QYWaitTimeout`` when ``timeout`` elapses first; the task keeps
		running. Cancelling the enclosing scope abandons the wait the same way.
		"""
		try:
			with anyio.fail_after(timeout):
				return await self._wait(handle, namespace, container_id)
		except TimeoutError as e:
			raise QYWaitTimeout(f"task {container_id} did not exit within {timeout}s", operation="wait_task", container_id=container_id, cause=e) from e

	async def _wait(self, handle: Handle, namespace: str, container_id: str) -> int:
		key = (namespace, container_id)
		while True:
			if key in self._exits:
				return self._exits[key]
			pending = self._waits.get(key)
			if pending is not None:
				# someone else is already waiting remotely; re-check when they finish
				await pending.wait()
				continue
			pending = anyio.Event()
			self._waits[key] = pending
			try:
				status = await handle.runtime.wait_task(namespace, container_id)
				self._record_exit(key, status)
				return status
			finally:
				if self._waits.get(key) is pending:
					del self._waits[key]
				pending.set()

	def _record_exit(self, key: _Key, status: int) -> None:
		self._exits[key] = status
		task = self._tasks.get(key)
		if task is not None:
			task.exit_status = status
			task.exited_at = datetime.now(timezone.utc)
			task.state = TaskState.EXITED
		logger.info("Task %s exited with status %s", key[1], status)

	async def delete(self, handle: Handle, namespace: str, container_id: str) -> Optional[int]:
		runtime = handle.runtime
		key = (namespace, container_id)
		try:
			state = await runtime.task_state(namespace, container_id)
		except QYNotFoundError:
			self.discard(namespace, container_id)
			raise
		if state == TaskState.RUNNING:
			raise QYTaskStillRunningError(f"task {container_id} is still running", operation="delete_task", container_id=container_id)
		try:
			status = await runtime.delete_task(namespace, container_id)
		except QYFailedPreconditionError as e:
			raise QYTaskStillRunningError(e.args[0], operation="delete_task", container_id=container_id, cause=e) from e
		cached = self._exits.get(key)
		self.discard(namespace, container_id)
		logger.debug("Deleted task %s", container_id)
		return status if status is not None else cached

	def discard(self, namespace: str, container_id: str) -> None:
		"""Forget a task and release the stdio files it owns."""
		key = (namespace, container_id)
		self._exits.pop(key, None)
		task = self._tasks.pop(key, None)
		if task is None:
			return
		task.state = TaskState.DELETED
		if not self.keep_stdio:
			self._release(task)

	def _release(self, task: TaskHandle) -> None:
		if not task.owns_stdio:
			return
		paths = task.stdio.paths()
		root = paths[0].parent if paths else None
		remove_files(paths, root)

	async def stop(self, handle: Handle, namespace: str, container_id: str, timeout: float = 10.0, signal: int = SIGTERM) -> Optional[int]:
		"""Signal the task, escalating to SIGKILL if it outlives ``timeout``.

		Returns the exit status if it was observed. A task that is already gone
		counts as stopped.
		"""
		runtime = handle.runtime
		try:
			state = await self.state(handle, namespace, container_id)
		except QYNotFoundError:
			return None
		if state == TaskState.CREATED:
			return None
		if state == TaskState.EXITED:
			with anyio.move_on_after(timeout):
				return await self._wait(handle, namespace, container_id)
			return None
		for sig in (int(signal), int(SIGKILL)):
			try:
				await runtime.kill_task(namespace, container_id, sig)
			except QYNotFoundError:
				logger.debug("Task %s already gone", container_id)
				break
			with anyio.move_on_after(timeout):
				return await self._wait(handle, namespace, container_id)
			logger.warning("Task %s still running %ss after signal %d", container_id, timeout, sig)
		else:
			return None
		try:
			with anyio.move_on_after(timeout):
				return await self._wait(handle, namespace, container_id)
		except QYNotFoundError:
			pass
		return None

	async def read_output(self, task: TaskHandle) -> Tuple[str, str]:
		return await read_text(task.stdout), await read_text(task.stderr)
