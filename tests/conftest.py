from __future__ import annotations

import signal
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

import anyio
import pytest

from quayside.config import Config
from quayside.core.transport import Handle
from quayside.errors import (
    QYAlreadyExistsError,
    QYConnectionError,
    QYFailedPreconditionError,
    QYNotFoundError,
    QYPullError,
    QYRuntimeError,
)
from quayside.runtime.base import RuntimeBackend
from quayside.types import (
    Container,
    ContainerSpec,
    ImageInfo,
    Platform,
    StdioPaths,
    TaskState,
    TransferDescriptor,
)


def echo_script(spec: ContainerSpec) -> Tuple[int, str, str]:
    """Fake process: ``sh -c "echo 'X'"`` prints X, ``sh -c "exit N"`` exits N."""
    if len(spec.args) >= 3 and spec.args[1] == "-c":
        command = spec.args[2]
        if command.startswith("echo "):
            return 0, command[len("echo "):].strip("'\"") + "\n", ""
        if command.startswith("exit "):
            return int(command.split()[1]), "", "bye\n"
    return 0, "", ""


@dataclass
class FakeTask:
    stdio: StdioPaths
    state: TaskState = TaskState.CREATED
    exit_status: Optional[int] = None
    exited: anyio.Event = field(default_factory=anyio.Event)


class FakeRuntime(RuntimeBackend):
    """In-memory daemon with containerd-like semantics."""

    name = "fake"

    def __init__(self, address: str = "unix:///run/fake.sock"):
        super().__init__(address)
        self.images: Dict[Tuple[str, str], ImageInfo] = {}
        self.containers: Dict[Tuple[str, str], Container] = {}
        self.tasks: Dict[Tuple[str, str], FakeTask] = {}
        self.script: Callable[[ContainerSpec], Tuple[int, str, str]] = echo_script
        self.auto_exit = True
        self.ignored_signals: Set[int] = set()
        self.pull_failures = 0
        self.pull_calls = 0
        self.wait_calls = 0
        self.fail_start = False
        self.ping_delay = 0.0
        self.unreachable = False
        self.closed = False
        self.events: List[str] = []

    def seed_image(self, namespace: str, name: str) -> None:
        self.images[(namespace, name)] = ImageInfo(name=name, digest="sha256:" + "0" * 64)

    def _task(self, namespace: str, container_id: str) -> FakeTask:
        task = self.tasks.get((namespace, container_id))
        if task is None:
            raise QYNotFoundError(f"no running task found: task {container_id} not found", operation="task", container_id=container_id)
        return task

    def _finish(self, namespace: str, container_id: str, status: int, stdout: str = "", stderr: str = "") -> None:
        task = self.tasks[(namespace, container_id)]
        if task.stdio.stdout is not None and stdout:
            task.stdio.stdout.write_text(stdout)
        if task.stdio.stderr is not None and stderr:
            task.stdio.stderr.write_text(stderr)
        task.exit_status = status
        task.state = TaskState.EXITED
        task.exited.set()

    async def ping(self) -> str:
        if self.unreachable:
            raise QYConnectionError("connection refused", operation="ping")
        if self.ping_delay:
            await anyio.sleep(self.ping_delay)
        return "fake-1.0"

    async def close(self) -> None:
        self.closed = True

    async def pull_image(self, namespace: str, transfer: TransferDescriptor) -> None:
        self.pull_calls += 1
        if self.pull_failures > 0:
            self.pull_failures -= 1
            raise QYPullError(f"failed to resolve {transfer.source}", operation="pull")
        self.seed_image(namespace, transfer.destination)
        self.events.append(f"pull {transfer.destination}")

    async def image_exists(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self.images

    async def list_images(self, namespace: str) -> List[ImageInfo]:
        return [info for (ns, _), info in self.images.items() if ns == namespace]

    async def create_container(self, namespace: str, spec: ContainerSpec, platform: Platform) -> Container:
        key = (namespace, spec.id)
        if key in self.containers:
            raise QYAlreadyExistsError(f"container {spec.id}: already exists", operation="create_container", container_id=spec.id)
        if (namespace, spec.image) not in self.images:
            raise QYNotFoundError(f"image {spec.image} not found", operation="create_container", container_id=spec.id)
        container = Container(id=spec.id, image=spec.image, runtime=spec.runtime, spec=spec, labels=dict(spec.labels), snapshot_key=spec.id)
        self.containers[key] = container
        self.events.append(f"create_container {spec.id}")
        return container

    async def get_container(self, namespace: str, container_id: str) -> Container:
        container = self.containers.get((namespace, container_id))
        if container is None:
            raise QYNotFoundError(f"container {container_id} not found", operation="get_container", container_id=container_id)
        return container

    async def delete_container(self, namespace: str, container_id: str) -> None:
        await self.get_container(namespace, container_id)
        if (namespace, container_id) in self.tasks:
            raise QYFailedPreconditionError("cannot delete a container with an existing task", operation="delete_container", container_id=container_id)
        del self.containers[(namespace, container_id)]
        self.events.append(f"delete_container {container_id}")

    async def create_task(self, namespace: str, container_id: str, stdio: StdioPaths, terminal: bool = False) -> int:
        await self.get_container(namespace, container_id)
        key = (namespace, container_id)
        if key in self.tasks:
            raise QYAlreadyExistsError(f"task {container_id}: already exists", operation="create_task", container_id=container_id)
        self.tasks[key] = FakeTask(stdio=stdio)
        self.events.append(f"create_task {container_id}")
        return 4242

    async def start_task(self, namespace: str, container_id: str) -> int:
        task = self._task(namespace, container_id)
        if self.fail_start:
            raise QYRuntimeError("OCI runtime start failed: exec: no such file", operation="start_task", container_id=container_id)
        if task.state != TaskState.CREATED:
            raise QYFailedPreconditionError(f"task {container_id} already started", operation="start_task", container_id=container_id)
        task.state = TaskState.RUNNING
        self.events.append(f"start_task {container_id}")
        if self.auto_exit:
            status, out, err = self.script(self.containers[(namespace, container_id)].spec)
            self._finish(namespace, container_id, status, out, err)
        return 4242

    async def task_state(self, namespace: str, container_id: str) -> TaskState:
        return self._task(namespace, container_id).state

    async def wait_task(self, namespace: str, container_id: str) -> int:
        task = self._task(namespace, container_id)
        self.wait_calls += 1
        await task.exited.wait()
        return task.exit_status

    async def kill_task(self, namespace: str, container_id: str, signal: int) -> None:
        task = self._task(namespace, container_id)
        if task.state != TaskState.RUNNING:
            raise QYNotFoundError("process already finished", operation="kill_task", container_id=container_id)
        self.events.append(f"kill_task {container_id} {signal}")
        if signal not in self.ignored_signals:
            self._finish(namespace, container_id, 128 + signal)

    async def delete_task(self, namespace: str, container_id: str) -> Optional[int]:
        task = self._task(namespace, container_id)
        if task.state == TaskState.RUNNING:
            raise QYFailedPreconditionError(f"task {container_id} must be stopped before deletion", operation="delete_task", container_id=container_id)
        del self.tasks[(namespace, container_id)]
        self.events.append(f"delete_task {container_id}")
        return task.exit_status


ALPINE = "docker.io/library/alpine:latest"
HELLO_ARGS = ("/bin/sh", "-c", "echo 'Hello'")


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def handle(runtime) -> Handle:
    return Handle(runtime, "fake-1.0")


@pytest.fixture()
def config(tmp_path) -> Config:
    return Config(
        scratch_dir=tmp_path / "scratch",
        pull_backoff=0,
        stop_timeout=0.5,
        cleanup_timeout=5,
    )


@pytest.fixture()
def alpine_spec() -> ContainerSpec:
    return ContainerSpec(id="my-alpine-container", image=ALPINE, args=HELLO_ARGS)


@pytest.fixture()
def sigterm_ignored(runtime) -> FakeRuntime:
    runtime.ignored_signals.add(int(signal.SIGTERM))
    return runtime
