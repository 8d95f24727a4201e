"""Docker SDK implementation of the runtime backend."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import anyio
import docker
from docker.errors import APIError, DockerException, NotFound

from quayside.config import DEFAULT_DOCKER_ADDRESS
from quayside.errors import (
    QYAlreadyExistsError,
    QYConnectionError,
    QYError,
    QYFailedPreconditionError,
    QYNotFoundError,
    QYPullError,
    QYRuntimeError,
)
from quayside.types import (
    Container,
    ContainerSpec,
    ImageInfo,
    Platform,
    StdioPaths,
    TaskState,
    TransferDescriptor,
    parse_reference,
)
from .base import RuntimeBackend

# Suppress Docker SDK debug logs
logging.getLogger("docker.utils.config").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

LABEL_NAMESPACE = "io.quayside.namespace"
LABEL_RUNTIME = "io.quayside.runtime"

_SCHEMES = ("unix://", "tcp://", "http://", "https://", "ssh://", "npipe://")

_STATES = {
    "created": TaskState.CREATED,
    "running": TaskState.RUNNING,
    "paused": TaskState.RUNNING,
    "restarting": TaskState.RUNNING,
    "removing": TaskState.EXITED,
    "exited": TaskState.EXITED,
    "dead": TaskState.EXITED,
}


def normalize_address(address: Optional[str]) -> str:
    if not address or not address.strip():
        raise QYConnectionError("daemon address is empty", operation="connect")
    raw = address.strip()
    if raw.startswith("/"):
        return f"unix://{raw}"
    if not raw.startswith(_SCHEMES):
        raise QYConnectionError(f"unsupported docker address {raw!r}", operation="connect")
    return raw


@dataclass
class _DockerTask:
    stdio: StdioPaths
    terminal: bool


class DockerRuntime(RuntimeBackend):
    """Docker runtime implementation using Docker SDK.

    Docker has no namespaces or separate task records: the namespace is kept
    in a container label and a task is the container's main process. Tasks
    created here are tracked in memory; a container started by another client
    is adopted as having a task once it has left the ``created`` state.
    """

    name = "docker"

    def __init__(self, address: Optional[str] = None, connect_timeout: float = 5.0):
        super().__init__(normalize_address(address or DEFAULT_DOCKER_ADDRESS))
        self.connect_timeout = connect_timeout
        self.client: Optional[docker.DockerClient] = None
        self._tasks: Dict[Tuple[str, str], _DockerTask] = {}
        self._deleted: Set[Tuple[str, str]] = set()

    async def _call(self, operation: str, fn: Callable[..., Any], *args, container_id: Optional[str] = None, abandon_on_cancel: bool = False, **kwargs):
        try:
            return await anyio.to_thread.run_sync(functools.partial(fn, *args, **kwargs), abandon_on_cancel=abandon_on_cancel)
        except NotFound as e:
            raise QYNotFoundError(e.explanation or str(e), operation=operation, container_id=container_id, cause=e) from e
        except APIError as e:
            if e.status_code == 409:
                raise QYAlreadyExistsError(e.explanation or str(e), operation=operation, container_id=container_id, cause=e) from e
            raise QYRuntimeError(e.explanation or str(e), operation=operation, container_id=container_id, cause=e) from e
        except DockerException as e:
            if operation in {"connect", "ping"}:
                raise QYConnectionError(f"Failed to connect to Docker daemon: {e}", operation=operation, cause=e) from e
            raise QYRuntimeError(str(e), operation=operation, container_id=container_id, cause=e) from e
        except OSError as e:
            # requests connection errors are OSErrors
            raise QYConnectionError(f"Failed to reach Docker daemon: {e}", operation=operation, container_id=container_id, cause=e) from e

    def _api(self):
        if self.client is None:
            raise QYConnectionError("Docker client is not connected", operation="connect")
        return self.client.api

    async def _inspect(self, namespace: str, container_id: str) -> Dict[str, Any]:
        data = await self._call("inspect", self._api().inspect_container, container_id, container_id=container_id)
        labels = (data.get("Config") or {}).get("Labels") or {}
        if labels.get(LABEL_NAMESPACE) != namespace:
            raise QYNotFoundError(f"container {container_id} not found in namespace {namespace}", operation="inspect", container_id=container_id)
        return data

    # connection
    async def ping(self) -> str:
        if self.client is None:
            self.client = await self._call(
                "connect",
                docker.DockerClient,
                base_url=self.address,
                timeout=int(max(self.connect_timeout, 1)),
            )
        version = await self._call("ping", self.client.version)
        return version.get("Version", "")

    async def close(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await anyio.to_thread.run_sync(client.close)

    # images
    async def pull_image(self, namespace: str, transfer: TransferDescriptor) -> None:
        platform = str(transfer.platforms[0]) if transfer.platforms else None
        try:
            await self._call("pull", self._api().pull, transfer.source, platform=platform)
        except QYConnectionError:
            raise
        except QYError as e:
            raise QYPullError(f"failed to pull {transfer.source}: {e}", operation="pull", cause=e) from e

    async def image_exists(self, namespace: str, name: str) -> bool:
        try:
            await self._call("inspect_image", self._api().inspect_image, name)
            return True
        except QYNotFoundError:
            return False

    async def list_images(self, namespace: str) -> List[ImageInfo]:
        images = await self._call("list_images", self._api().images)
        out = []
        for img in images:
            for tag in img.get("RepoTags") or []:
                out.append(ImageInfo(name=tag, digest=img.get("Id", ""), size=img.get("Size", 0)))
        return out

    # containers
    async def create_container(self, namespace: str, spec: ContainerSpec, platform: Platform) -> Container:
        api = self._api()
        image = str(parse_reference(spec.image))
        labels = {**spec.labels, LABEL_NAMESPACE: namespace, LABEL_RUNTIME: spec.runtime}
        host_config = api.create_host_config(
            read_only=spec.root_readonly,
            network_mode="host" if spec.host_network else "bridge",
        )
        await self._call(
            "create_container",
            api.create_container,
            image=image,
            name=spec.id,
            entrypoint=[spec.args[0]],
            command=list(spec.args[1:]),
            environment=dict(spec.env),
            working_dir=spec.cwd,
            tty=spec.terminal,
            labels=labels,
            host_config=host_config,
            container_id=spec.id,
        )
        return Container(id=spec.id, image=image, runtime=spec.runtime, spec=spec, labels=labels)

    async def get_container(self, namespace: str, container_id: str) -> Container:
        data = await self._inspect(namespace, container_id)
        cfg = data.get("Config") or {}
        host = data.get("HostConfig") or {}
        labels = dict(cfg.get("Labels") or {})
        env = {}
        for item in cfg.get("Env") or []:
            key, _, value = item.partition("=")
            env[key] = value
        spec = ContainerSpec(
            id=container_id,
            image=cfg.get("Image", ""),
            args=tuple((cfg.get("Entrypoint") or []) + (cfg.get("Cmd") or [])),
            runtime=labels.get(LABEL_RUNTIME, "docker"),
            root_readonly=bool(host.get("ReadonlyRootfs")),
            env=env,
            cwd=cfg.get("WorkingDir") or None,
            terminal=bool(cfg.get("Tty")),
            host_network=host.get("NetworkMode") == "host",
            labels=labels,
        )
        return Container(id=container_id, image=spec.image, runtime=spec.runtime, spec=spec, labels=labels)

    async def delete_container(self, namespace: str, container_id: str) -> None:
        await self._inspect(namespace, container_id)
        try:
            await self._call("delete_container", self._api().remove_container, container_id, container_id=container_id)
        except QYAlreadyExistsError as e:
            raise QYFailedPreconditionError(e.args[0], operation="delete_container", container_id=container_id, cause=e) from e
        self._tasks.pop((namespace, container_id), None)
        self._deleted.discard((namespace, container_id))

    # tasks
    async def create_task(self, namespace: str, container_id: str, stdio: StdioPaths, terminal: bool = False) -> int:
        data = await self._inspect(namespace, container_id)
        key = (namespace, container_id)
        if key in self._tasks or data["State"].get("Status") != "created":
            raise QYAlreadyExistsError(f"task for {container_id} already exists", operation="create_task", container_id=container_id)
        self._deleted.discard(key)
        self._tasks[key] = _DockerTask(stdio=stdio, terminal=terminal)
        return 0

    async def _task(self, namespace: str, container_id: str) -> _DockerTask:
        key = (namespace, container_id)
        task = self._tasks.get(key)
        if task is not None:
            return task
        if key not in self._deleted:
            # a container started elsewhere has a task once it leaves "created"
            data = await self._inspect(namespace, container_id)
            if data["State"].get("Status", "created") != "created":
                task = _DockerTask(stdio=StdioPaths(), terminal=bool((data.get("Config") or {}).get("Tty")))
                self._tasks[key] = task
                logger.debug("Adopted running task of container %s", container_id)
                return task
        raise QYNotFoundError(f"no task for container {container_id}", operation="task", container_id=container_id)

    async def start_task(self, namespace: str, container_id: str) -> int:
        await self._task(namespace, container_id)
        await self._call("start_task", self._api().start, container_id, container_id=container_id)
        data = await self._inspect(namespace, container_id)
        return int(data["State"].get("Pid") or 0)

    async def task_state(self, namespace: str, container_id: str) -> TaskState:
        await self._task(namespace, container_id)
        data = await self._inspect(namespace, container_id)
        return _STATES.get(data["State"].get("Status", ""), TaskState.RUNNING)

    async def wait_task(self, namespace: str, container_id: str) -> int:
        task = await self._task(namespace, container_id)
        api = self._api()
        result = await self._call("wait_task", api.wait, container_id, container_id=container_id, abandon_on_cancel=True)
        # docker keeps output in its log driver; copy it to the task's files
        if task.stdio.stdout is not None:
            out = await self._call("logs", api.logs, container_id, stdout=True, stderr=task.terminal, container_id=container_id)
            await anyio.Path(task.stdio.stdout).write_bytes(out)
        if task.stdio.stderr is not None and not task.terminal:
            err = await self._call("logs", api.logs, container_id, stdout=False, stderr=True, container_id=container_id)
            await anyio.Path(task.stdio.stderr).write_bytes(err)
        return int(result.get("StatusCode", 0))

    async def kill_task(self, namespace: str, container_id: str, signal: int) -> None:
        await self._task(namespace, container_id)
        try:
            await self._call("kill_task", self._api().kill, container_id, signal=signal, container_id=container_id)
        except QYAlreadyExistsError as e:
            # 409: the process is no longer running
            raise QYNotFoundError(e.args[0], operation="kill_task", container_id=container_id, cause=e) from e

    async def delete_task(self, namespace: str, container_id: str) -> Optional[int]:
        await self._task(namespace, container_id)
        data = await self._inspect(namespace, container_id)
        state = data["State"]
        if _STATES.get(state.get("Status", "")) == TaskState.RUNNING:
            raise QYFailedPreconditionError(f"task {container_id} is still running", operation="delete_task", container_id=container_id)
        key = (namespace, container_id)
        self._tasks.pop(key, None)
        self._deleted.add(key)
        return state.get("ExitCode") if state.get("Status") in {"exited", "dead"} else None
