"""containerd implementation of the runtime backend, over gRPC."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import grpc
from grpc import aio

from quayside.config import DEFAULT_CONTAINERD_ADDRESS, DEFAULT_SNAPSHOTTER
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
from . import ocispec, protocol
from .base import RuntimeBackend

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 16 << 20

INDEX_MEDIA_TYPES = {
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
}

_STATUS_CODES = {
    grpc.StatusCode.NOT_FOUND: QYNotFoundError,
    grpc.StatusCode.ALREADY_EXISTS: QYAlreadyExistsError,
    grpc.StatusCode.FAILED_PRECONDITION: QYFailedPreconditionError,
    grpc.StatusCode.UNAVAILABLE: QYConnectionError,
}

_TASK_STATES = {
    protocol.STATUS_CREATED: TaskState.CREATED,
    protocol.STATUS_RUNNING: TaskState.RUNNING,
    protocol.STATUS_PAUSED: TaskState.RUNNING,
    protocol.STATUS_PAUSING: TaskState.RUNNING,
    protocol.STATUS_STOPPED: TaskState.EXITED,
}


def normalize_address(address: Optional[str]) -> str:
    """Turn a socket path or ``unix://`` URL into a gRPC target."""
    if not address or not address.strip():
        raise QYConnectionError("daemon address is empty", operation="connect")
    raw = address.strip()
    if raw.startswith("unix://"):
        path = raw[len("unix://"):]
    elif raw.startswith("unix:"):
        path = raw[len("unix:"):]
    elif "://" in raw:
        raise QYConnectionError(f"unsupported address scheme in {raw!r}", operation="connect")
    else:
        path = raw
    if not path.startswith("/"):
        raise QYConnectionError(f"socket path must be absolute: {raw!r}", operation="connect")
    return f"unix://{path}"


def translate_rpc_error(err: grpc.RpcError, operation: str, container_id: Optional[str] = None) -> QYError:
    code = err.code() if hasattr(err, "code") else None
    cls = _STATUS_CODES.get(code, QYRuntimeError)
    details = err.details() if hasattr(err, "details") else None
    return cls(details or f"{operation} failed with {code}", operation=operation, container_id=container_id, cause=err)


def compute_chain_id(diff_ids: Sequence[str]) -> str:
    """Snapshot name of an unpacked layer stack."""
    if not diff_ids:
        raise QYRuntimeError("image has no layers", operation="chain_id")
    chain = diff_ids[0]
    for diff_id in diff_ids[1:]:
        chain = "sha256:" + hashlib.sha256(f"{chain} {diff_id}".encode("utf-8")).hexdigest()
    return chain


def select_manifest(manifests: List[Dict[str, Any]], platform: Platform) -> Optional[Dict[str, Any]]:
    """Pick the index entry for ``platform``; an exact variant match wins."""
    candidates = []
    for entry in manifests:
        p = entry.get("platform") or {}
        if p.get("os") == platform.os and p.get("architecture") == platform.architecture:
            candidates.append(entry)
    if not candidates:
        return None
    if platform.variant:
        for entry in candidates:
            if (entry.get("platform") or {}).get("variant") == platform.variant:
                return entry
    return candidates[0]


def _platform_message(p: Platform):
    return protocol.Platform(os=p.os, architecture=p.architecture, variant=p.variant, os_version=p.os_version)


class ContainerdRuntime(RuntimeBackend):
    """containerd runtime implementation using the daemon's v1 gRPC services."""

    name = "containerd"

    def __init__(self, address: Optional[str] = None, snapshotter: str = DEFAULT_SNAPSHOTTER, connect_timeout: float = 5.0):
        super().__init__(normalize_address(address or DEFAULT_CONTAINERD_ADDRESS))
        self.snapshotter = snapshotter
        self.connect_timeout = connect_timeout
        self._channel: Optional[aio.Channel] = None

    def _ensure_channel(self) -> aio.Channel:
        # Created lazily so the channel binds to the running event loop
        if self._channel is None:
            self._channel = aio.insecure_channel(
                self.address,
                options=[
                    ("grpc.max_receive_message_length", MAX_MESSAGE_SIZE),
                    ("grpc.max_send_message_length", MAX_MESSAGE_SIZE),
                ],
            )
        return self._channel

    async def _unary(self, key: str, request, namespace: Optional[str] = None, *, container_id: Optional[str] = None, timeout: Optional[float] = None):
        method, req_cls, resp_cls, _ = protocol.METHODS[key]
        call = self._ensure_channel().unary_unary(
            method,
            request_serializer=req_cls.SerializeToString,
            response_deserializer=resp_cls.FromString,
        )
        metadata = protocol.namespace_metadata(namespace) if namespace else None
        try:
            return await call(request, metadata=metadata, timeout=timeout)
        except grpc.RpcError as e:
            raise translate_rpc_error(e, key, container_id) from e

    async def _read_blob(self, namespace: str, digest: str) -> bytes:
        method, req_cls, resp_cls, _ = protocol.METHODS["read_content"]
        call = self._ensure_channel().unary_stream(
            method,
            request_serializer=req_cls.SerializeToString,
            response_deserializer=resp_cls.FromString,
        )
        buf = bytearray()
        try:
            async for chunk in call(protocol.ReadContentRequest(digest=digest), metadata=protocol.namespace_metadata(namespace)):
                buf.extend(chunk.data)
        except grpc.RpcError as e:
            raise translate_rpc_error(e, "read_content") from e
        return bytes(buf)

    async def _read_json(self, namespace: str, digest: str) -> Dict[str, Any]:
        raw = await self._read_blob(namespace, digest)
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise QYRuntimeError(f"blob {digest} is not valid JSON", operation="read_content", cause=e) from e

    # connection
    async def ping(self) -> str:
        resp = await self._unary("version", protocol.Empty(), timeout=self.connect_timeout)
        return resp.version

    async def close(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    # images
    async def pull_image(self, namespace: str, transfer: TransferDescriptor) -> None:
        source = protocol.OCIRegistry(reference=transfer.source)
        destination = protocol.ImageStore(name=transfer.destination)
        for p in transfer.platforms:
            destination.platforms.append(_platform_message(p))
        for unpack in transfer.unpacks:
            u = destination.unpacks.add(snapshotter=unpack.snapshotter)
            u.platform.CopyFrom(_platform_message(unpack.platform))

        request = protocol.TransferRequest()
        protocol.fill_any(request.source, protocol.pack(source))
        protocol.fill_any(request.destination, protocol.pack(destination))
        request.options.SetInParent()
        try:
            await self._unary("transfer", request, namespace)
        except QYConnectionError:
            raise
        except QYError as e:
            raise QYPullError(f"failed to pull {transfer.source}: {e}", operation="pull", cause=e) from e

    async def image_exists(self, namespace: str, name: str) -> bool:
        try:
            await self._unary("get_image", protocol.GetImageRequest(name=name), namespace)
            return True
        except QYNotFoundError:
            return False

    async def list_images(self, namespace: str) -> List[ImageInfo]:
        resp = await self._unary("list_images", protocol.ListImagesRequest(), namespace)
        return [
            ImageInfo(name=img.name, digest=img.target.digest, media_type=img.target.media_type, size=img.target.size)
            for img in resp.images
        ]

    async def image_config(self, namespace: str, name: str, platform: Platform) -> Tuple[Dict[str, Any], List[str]]:
        """Return the image's runtime config section and its layer diff ids."""
        try:
            resp = await self._unary("get_image", protocol.GetImageRequest(name=name), namespace)
        except QYNotFoundError as e:
            raise QYNotFoundError(f"image {name} is not present; pull it first", operation="image_config", cause=e) from e
        doc = await self._read_json(namespace, resp.image.target.digest)
        if "manifests" in doc or resp.image.target.media_type in INDEX_MEDIA_TYPES:
            entry = select_manifest(doc.get("manifests", []), platform)
            if entry is None:
                raise QYNotFoundError(f"image {name} has no manifest for {platform}", operation="image_config")
            doc = await self._read_json(namespace, entry["digest"])
        try:
            config_digest = doc["config"]["digest"]
        except (KeyError, TypeError) as e:
            raise QYRuntimeError(f"image {name} has a malformed manifest: missing config digest", operation="image_config", cause=e) from e
        config = await self._read_json(namespace, config_digest)
        return config.get("config") or {}, list(config.get("rootfs", {}).get("diff_ids", []))

    # snapshots
    async def _prepare_snapshot(self, namespace: str, key: str, parent: str) -> None:
        request = protocol.PrepareSnapshotRequest(snapshotter=self.snapshotter, key=key, parent=parent)
        try:
            await self._unary("prepare_snapshot", request, namespace, container_id=key)
        except QYAlreadyExistsError:
            logger.warning("Removing orphaned snapshot %s before re-preparing it", key)
            await self._remove_snapshot(namespace, self.snapshotter, key)
            await self._unary("prepare_snapshot", request, namespace, container_id=key)

    async def _remove_snapshot(self, namespace: str, snapshotter: str, key: str) -> None:
        try:
            await self._unary("remove_snapshot", protocol.RemoveSnapshotRequest(snapshotter=snapshotter, key=key), namespace, container_id=key)
        except QYNotFoundError:
            pass

    # containers
    async def _get_container_message(self, namespace: str, container_id: str):
        resp = await self._unary("get_container", protocol.GetContainerRequest(id=container_id), namespace, container_id=container_id)
        return resp.container

    async def create_container(self, namespace: str, spec: ContainerSpec, platform: Platform) -> Container:
        try:
            await self._get_container_message(namespace, spec.id)
        except QYNotFoundError:
            pass
        else:
            raise QYAlreadyExistsError(f"container {spec.id} already exists", operation="create_container", container_id=spec.id)

        image = str(parse_reference(spec.image))
        image_cfg, diff_ids = await self.image_config(namespace, image, platform)
        await self._prepare_snapshot(namespace, spec.id, compute_chain_id(diff_ids))

        document = ocispec.build_runtime_spec(spec, namespace, image_cfg)
        msg = protocol.Container(id=spec.id, image=image, snapshotter=self.snapshotter, snapshot_key=spec.id)
        msg.runtime.name = spec.runtime
        msg.spec.type_url = protocol.RUNTIME_SPEC_TYPE_URL
        msg.spec.value = ocispec.encode(document)
        for k, v in spec.labels.items():
            msg.labels[k] = v

        try:
            await self._unary("create_container", protocol.CreateContainerRequest(container=msg), namespace, container_id=spec.id)
        except QYError:
            try:
                await self._remove_snapshot(namespace, self.snapshotter, spec.id)
            except QYError as cleanup_err:
                logger.warning("Failed to roll back snapshot %s: %s", spec.id, cleanup_err)
            raise
        logger.debug("Created container %s from %s", spec.id, image)
        return Container(id=spec.id, image=image, runtime=spec.runtime, spec=spec, labels=dict(spec.labels), snapshot_key=spec.id)

    async def get_container(self, namespace: str, container_id: str) -> Container:
        msg = await self._get_container_message(namespace, container_id)
        labels = dict(msg.labels)
        spec = ocispec.decode_spec(msg.id, msg.image, msg.runtime.name, msg.spec.value, labels)
        return Container(id=msg.id, image=msg.image, runtime=msg.runtime.name, spec=spec, labels=labels, snapshot_key=msg.snapshot_key or None)

    async def delete_container(self, namespace: str, container_id: str) -> None:
        msg = await self._get_container_message(namespace, container_id)
        await self._unary("delete_container", protocol.DeleteContainerRequest(id=container_id), namespace, container_id=container_id)
        if msg.snapshot_key:
            try:
                await self._remove_snapshot(namespace, msg.snapshotter or self.snapshotter, msg.snapshot_key)
            except QYError as e:
                logger.warning("Container %s deleted but its snapshot was not removed: %s", container_id, e)

    # tasks
    async def create_task(self, namespace: str, container_id: str, stdio: StdioPaths, terminal: bool = False) -> int:
        container = await self._get_container_message(namespace, container_id)
        request = protocol.CreateTaskRequest(
            container_id=container_id,
            stdin=str(stdio.stdin or ""),
            stdout=str(stdio.stdout or ""),
            stderr="" if terminal else str(stdio.stderr or ""),
            terminal=terminal,
        )
        if container.snapshot_key:
            mounts = await self._unary(
                "snapshot_mounts",
                protocol.MountsRequest(snapshotter=container.snapshotter or self.snapshotter, key=container.snapshot_key),
                namespace,
                container_id=container_id,
            )
            request.rootfs.extend(mounts.mounts)
        resp = await self._unary("create_task", request, namespace, container_id=container_id)
        return resp.pid

    async def start_task(self, namespace: str, container_id: str) -> int:
        resp = await self._unary("start_task", protocol.StartRequest(container_id=container_id), namespace, container_id=container_id)
        return resp.pid

    async def task_state(self, namespace: str, container_id: str) -> TaskState:
        resp = await self._unary("get_task", protocol.GetRequest(container_id=container_id), namespace, container_id=container_id)
        # unknown status means the shim lost track; treat as still running
        return _TASK_STATES.get(resp.process.status, TaskState.RUNNING)

    async def wait_task(self, namespace: str, container_id: str) -> int:
        resp = await self._unary("wait_task", protocol.WaitRequest(container_id=container_id), namespace, container_id=container_id)
        return resp.exit_status

    async def kill_task(self, namespace: str, container_id: str, signal: int) -> None:
        await self._unary("kill_task", protocol.KillRequest(container_id=container_id, signal=signal), namespace, container_id=container_id)

    async def delete_task(self, namespace: str, container_id: str) -> Optional[int]:
        resp = await self._unary("delete_task", protocol.DeleteTaskRequest(container_id=container_id), namespace, container_id=container_id)
        return resp.exit_status
