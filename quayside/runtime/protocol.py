"""Wire schemas for the subset of the containerd v1 gRPC API used here.

Only the fields this client reads or writes are declared; proto3 decoding
skips anything else the daemon sends. Field numbers follow the daemon's
``api/services`` and ``api/types`` protos.
"""

from __future__ import annotations

from typing import Optional, Sequence

from google.protobuf import any_pb2, descriptor_pb2, descriptor_pool, empty_pb2, message_factory

FD = descriptor_pb2.FieldDescriptorProto

STRING = FD.TYPE_STRING
BOOL = FD.TYPE_BOOL
UINT32 = FD.TYPE_UINT32
INT64 = FD.TYPE_INT64
BYTES = FD.TYPE_BYTES
MESSAGE = FD.TYPE_MESSAGE

NAMESPACE_HEADER = "containerd-namespace"
RUNTIME_SPEC_TYPE_URL = "types.containerd.io/opencontainers/runtime-spec/1/Spec"

# containerd.v1.types.Status
STATUS_UNKNOWN = 0
STATUS_CREATED = 1
STATUS_RUNNING = 2
STATUS_STOPPED = 3
STATUS_PAUSED = 4
STATUS_PAUSING = 5

_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(any_pb2.DESCRIPTOR.serialized_pb)


def _field(msg, name: str, number: int, kind: int, *, repeated: bool = False, type_name: Optional[str] = None) -> None:
    f = msg.field.add(name=name, number=number, type=kind)
    f.label = FD.LABEL_REPEATED if repeated else FD.LABEL_OPTIONAL
    if type_name:
        f.type_name = type_name


def _string_map(msg, name: str, number: int, owner: str) -> None:
    entry_name = "".join(p.capitalize() for p in name.split("_")) + "Entry"
    entry = msg.nested_type.add(name=entry_name)
    entry.options.map_entry = True
    _field(entry, "key", 1, STRING)
    _field(entry, "value", 2, STRING)
    _field(msg, name, number, MESSAGE, repeated=True, type_name=f".{owner}.{entry_name}")


def _file(name: str, package: str, deps: Sequence[str] = ()) -> descriptor_pb2.FileDescriptorProto:
    return descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax="proto3", dependency=list(deps))


# containerd/types
_types = _file("quayside/containerd/types.proto", "containerd.types")
_m = _types.message_type.add(name="Mount")
_field(_m, "type", 1, STRING)
_field(_m, "source", 2, STRING)
_field(_m, "target", 3, STRING)
_field(_m, "options", 4, STRING, repeated=True)
_m = _types.message_type.add(name="Platform")
_field(_m, "os", 1, STRING)
_field(_m, "architecture", 2, STRING)
_field(_m, "variant", 3, STRING)
_field(_m, "os_version", 4, STRING)
_m = _types.message_type.add(name="Descriptor")
_field(_m, "media_type", 1, STRING)
_field(_m, "digest", 2, STRING)
_field(_m, "size", 3, INT64)
_pool.AddSerializedFile(_types.SerializeToString())

# containerd/types/transfer
_transfer_types = _file("quayside/containerd/transfer_types.proto", "containerd.types.transfer", ["quayside/containerd/types.proto"])
_m = _transfer_types.message_type.add(name="OCIRegistry")
_field(_m, "reference", 1, STRING)
_m = _transfer_types.message_type.add(name="UnpackConfiguration")
_field(_m, "platform", 1, MESSAGE, type_name=".containerd.types.Platform")
_field(_m, "snapshotter", 2, STRING)
_m = _transfer_types.message_type.add(name="ImageStore")
_field(_m, "name", 1, STRING)
_field(_m, "platforms", 3, MESSAGE, repeated=True, type_name=".containerd.types.Platform")
_field(_m, "unpacks", 7, MESSAGE, repeated=True, type_name=".containerd.types.transfer.UnpackConfiguration")
_pool.AddSerializedFile(_transfer_types.SerializeToString())

# containerd/v1/types (task process)
_task_types = _file("quayside/containerd/task_types.proto", "containerd.v1.types")
_m = _task_types.message_type.add(name="Process")
_field(_m, "container_id", 1, STRING)
_field(_m, "id", 2, STRING)
_field(_m, "pid", 3, UINT32)
_field(_m, "status", 4, UINT32)
_field(_m, "exit_status", 9, UINT32)
_pool.AddSerializedFile(_task_types.SerializeToString())

# services/containers/v1
_pkg = "containerd.services.containers.v1"
_containers = _file("quayside/containerd/containers.proto", _pkg, ["google/protobuf/any.proto"])
_m = _containers.message_type.add(name="Container")
_rt = _m.nested_type.add(name="Runtime")
_field(_rt, "name", 1, STRING)
_field(_rt, "options", 2, MESSAGE, type_name=".google.protobuf.Any")
_field(_m, "id", 1, STRING)
_string_map(_m, "labels", 2, f"{_pkg}.Container")
_field(_m, "image", 3, STRING)
_field(_m, "runtime", 4, MESSAGE, type_name=f".{_pkg}.Container.Runtime")
_field(_m, "spec", 5, MESSAGE, type_name=".google.protobuf.Any")
_field(_m, "snapshotter", 6, STRING)
_field(_m, "snapshot_key", 7, STRING)
for _name in ("GetContainerRequest", "DeleteContainerRequest"):
    _field(_containers.message_type.add(name=_name), "id", 1, STRING)
for _name in ("GetContainerResponse", "CreateContainerRequest", "CreateContainerResponse"):
    _field(_containers.message_type.add(name=_name), "container", 1, MESSAGE, type_name=f".{_pkg}.Container")
_pool.AddSerializedFile(_containers.SerializeToString())

# services/tasks/v1
_pkg = "containerd.services.tasks.v1"
_tasks = _file("quayside/containerd/tasks.proto", _pkg, ["quayside/containerd/types.proto", "quayside/containerd/task_types.proto"])
_m = _tasks.message_type.add(name="CreateTaskRequest")
_field(_m, "container_id", 1, STRING)
_field(_m, "rootfs", 3, MESSAGE, repeated=True, type_name=".containerd.types.Mount")
_field(_m, "stdin", 4, STRING)
_field(_m, "stdout", 5, STRING)
_field(_m, "stderr", 6, STRING)
_field(_m, "terminal", 7, BOOL)
_m = _tasks.message_type.add(name="CreateTaskResponse")
_field(_m, "container_id", 1, STRING)
_field(_m, "pid", 2, UINT32)
for _name in ("StartRequest", "GetRequest", "WaitRequest"):
    _m = _tasks.message_type.add(name=_name)
    _field(_m, "container_id", 1, STRING)
    _field(_m, "exec_id", 2, STRING)
_field(_tasks.message_type.add(name="StartResponse"), "pid", 1, UINT32)
_field(_tasks.message_type.add(name="DeleteTaskRequest"), "container_id", 1, STRING)
_m = _tasks.message_type.add(name="DeleteResponse")
_field(_m, "id", 1, STRING)
_field(_m, "pid", 2, UINT32)
_field(_m, "exit_status", 3, UINT32)
_field(_tasks.message_type.add(name="GetResponse"), "process", 1, MESSAGE, type_name=".containerd.v1.types.Process")
_m = _tasks.message_type.add(name="KillRequest")
_field(_m, "container_id", 1, STRING)
_field(_m, "exec_id", 2, STRING)
_field(_m, "signal", 3, UINT32)
_field(_m, "all", 4, BOOL)
_field(_tasks.message_type.add(name="WaitResponse"), "exit_status", 1, UINT32)
_pool.AddSerializedFile(_tasks.SerializeToString())

# services/images/v1
_pkg = "containerd.services.images.v1"
_images = _file("quayside/containerd/images.proto", _pkg, ["quayside/containerd/types.proto"])
_m = _images.message_type.add(name="Image")
_field(_m, "name", 1, STRING)
_string_map(_m, "labels", 2, f"{_pkg}.Image")
_field(_m, "target", 3, MESSAGE, type_name=".containerd.types.Descriptor")
_field(_images.message_type.add(name="GetImageRequest"), "name", 1, STRING)
_field(_images.message_type.add(name="GetImageResponse"), "image", 1, MESSAGE, type_name=f".{_pkg}.Image")
_field(_images.message_type.add(name="ListImagesRequest"), "filters", 1, STRING, repeated=True)
_field(_images.message_type.add(name="ListImagesResponse"), "images", 1, MESSAGE, repeated=True, type_name=f".{_pkg}.Image")
_pool.AddSerializedFile(_images.SerializeToString())

# services/content/v1
_content = _file("quayside/containerd/content.proto", "containerd.services.content.v1")
_m = _content.message_type.add(name="ReadContentRequest")
_field(_m, "digest", 1, STRING)
_field(_m, "offset", 2, INT64)
_field(_m, "size", 3, INT64)
_m = _content.message_type.add(name="ReadContentResponse")
_field(_m, "offset", 1, INT64)
_field(_m, "data", 2, BYTES)
_pool.AddSerializedFile(_content.SerializeToString())

# services/snapshots/v1
_snapshots = _file("quayside/containerd/snapshots.proto", "containerd.services.snapshots.v1", ["quayside/containerd/types.proto"])
_m = _snapshots.message_type.add(name="PrepareSnapshotRequest")
_field(_m, "snapshotter", 1, STRING)
_field(_m, "key", 2, STRING)
_field(_m, "parent", 3, STRING)
for _name in ("PrepareSnapshotResponse", "MountsResponse"):
    _field(_snapshots.message_type.add(name=_name), "mounts", 1, MESSAGE, repeated=True, type_name=".containerd.types.Mount")
for _name in ("MountsRequest", "RemoveSnapshotRequest"):
    _m = _snapshots.message_type.add(name=_name)
    _field(_m, "snapshotter", 1, STRING)
    _field(_m, "key", 2, STRING)
_pool.AddSerializedFile(_snapshots.SerializeToString())

# services/transfer/v1
_pkg = "containerd.services.transfer.v1"
_transfer = _file("quayside/containerd/transfer.proto", _pkg, ["google/protobuf/any.proto"])
_transfer.message_type.add(name="TransferOptions")
_m = _transfer.message_type.add(name="TransferRequest")
_field(_m, "source", 1, MESSAGE, type_name=".google.protobuf.Any")
_field(_m, "destination", 2, MESSAGE, type_name=".google.protobuf.Any")
_field(_m, "options", 3, MESSAGE, type_name=f".{_pkg}.TransferOptions")
_pool.AddSerializedFile(_transfer.SerializeToString())

# services/version/v1
_version = _file("quayside/containerd/version.proto", "containerd.services.version.v1")
_m = _version.message_type.add(name="VersionResponse")
_field(_m, "version", 1, STRING)
_field(_m, "revision", 2, STRING)
_pool.AddSerializedFile(_version.SerializeToString())


def message(full_name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(full_name))


Mount = message("containerd.types.Mount")
Platform = message("containerd.types.Platform")
Descriptor = message("containerd.types.Descriptor")

OCIRegistry = message("containerd.types.transfer.OCIRegistry")
ImageStore = message("containerd.types.transfer.ImageStore")
UnpackConfiguration = message("containerd.types.transfer.UnpackConfiguration")

Container = message("containerd.services.containers.v1.Container")
GetContainerRequest = message("containerd.services.containers.v1.GetContainerRequest")
GetContainerResponse = message("containerd.services.containers.v1.GetContainerResponse")
CreateContainerRequest = message("containerd.services.containers.v1.CreateContainerRequest")
CreateContainerResponse = message("containerd.services.containers.v1.CreateContainerResponse")
DeleteContainerRequest = message("containerd.services.containers.v1.DeleteContainerRequest")

CreateTaskRequest = message("containerd.services.tasks.v1.CreateTaskRequest")
CreateTaskResponse = message("containerd.services.tasks.v1.CreateTaskResponse")
StartRequest = message("containerd.services.tasks.v1.StartRequest")
StartResponse = message("containerd.services.tasks.v1.StartResponse")
GetRequest = message("containerd.services.tasks.v1.GetRequest")
GetResponse = message("containerd.services.tasks.v1.GetResponse")
KillRequest = message("containerd.services.tasks.v1.KillRequest")
WaitRequest = message("containerd.services.tasks.v1.WaitRequest")
WaitResponse = message("containerd.services.tasks.v1.WaitResponse")
DeleteTaskRequest = message("containerd.services.tasks.v1.DeleteTaskRequest")
DeleteResponse = message("containerd.services.tasks.v1.DeleteResponse")

GetImageRequest = message("containerd.services.images.v1.GetImageRequest")
GetImageResponse = message("containerd.services.images.v1.GetImageResponse")
ListImagesRequest = message("containerd.services.images.v1.ListImagesRequest")
ListImagesResponse = message("containerd.services.images.v1.ListImagesResponse")

ReadContentRequest = message("containerd.services.content.v1.ReadContentRequest")
ReadContentResponse = message("containerd.services.content.v1.ReadContentResponse")

PrepareSnapshotRequest = message("containerd.services.snapshots.v1.PrepareSnapshotRequest")
PrepareSnapshotResponse = message("containerd.services.snapshots.v1.PrepareSnapshotResponse")
MountsRequest = message("containerd.services.snapshots.v1.MountsRequest")
MountsResponse = message("containerd.services.snapshots.v1.MountsResponse")
RemoveSnapshotRequest = message("containerd.services.snapshots.v1.RemoveSnapshotRequest")

TransferOptions = message("containerd.services.transfer.v1.TransferOptions")
TransferRequest = message("containerd.services.transfer.v1.TransferRequest")

VersionResponse = message("containerd.services.version.v1.VersionResponse")

Empty = empty_pb2.Empty


# service -> (method, request, response, server streaming)
METHODS = {
    "version": ("/containerd.services.version.v1.Version/Version", Empty, VersionResponse, False),
    "transfer": ("/containerd.services.transfer.v1.Transfer/Transfer", TransferRequest, Empty, False),
    "get_image": ("/containerd.services.images.v1.Images/Get", GetImageRequest, GetImageResponse, False),
    "list_images": ("/containerd.services.images.v1.Images/List", ListImagesRequest, ListImagesResponse, False),
    "read_content": ("/containerd.services.content.v1.Content/Read", ReadContentRequest, ReadContentResponse, True),
    "prepare_snapshot": ("/containerd.services.snapshots.v1.Snapshots/Prepare", PrepareSnapshotRequest, PrepareSnapshotResponse, False),
    "snapshot_mounts": ("/containerd.services.snapshots.v1.Snapshots/Mounts", MountsRequest, MountsResponse, False),
    "remove_snapshot": ("/containerd.services.snapshots.v1.Snapshots/Remove", RemoveSnapshotRequest, Empty, False),
    "get_container": ("/containerd.services.containers.v1.Containers/Get", GetContainerRequest, GetContainerResponse, False),
    "create_container": ("/containerd.services.containers.v1.Containers/Create", CreateContainerRequest, CreateContainerResponse, False),
    "delete_container": ("/containerd.services.containers.v1.Containers/Delete", DeleteContainerRequest, Empty, False),
    "create_task": ("/containerd.services.tasks.v1.Tasks/Create", CreateTaskRequest, CreateTaskResponse, False),
    "start_task": ("/containerd.services.tasks.v1.Tasks/Start", StartRequest, StartResponse, False),
    "get_task": ("/containerd.services.tasks.v1.Tasks/Get", GetRequest, GetResponse, False),
    "kill_task": ("/containerd.services.tasks.v1.Tasks/Kill", KillRequest, Empty, False),
    "wait_task": ("/containerd.services.tasks.v1.Tasks/Wait", WaitRequest, WaitResponse, False),
    "delete_task": ("/containerd.services.tasks.v1.Tasks/Delete", DeleteTaskRequest, DeleteResponse, False),
}


def pack(msg, type_url: Optional[str] = None):
    """Wrap ``msg`` in a ``google.protobuf.Any`` keyed by its full name."""
    out = any_pb2.Any()
    out.type_url = type_url or msg.DESCRIPTOR.full_name
    out.value = msg.SerializeToString()
    return out


def fill_any(target, source) -> None:
    # Any fields of pool messages are distinct classes from any_pb2.Any
    target.type_url = source.type_url
    target.value = source.value


def namespace_metadata(namespace: str) -> tuple:
    return ((NAMESPACE_HEADER, namespace),)
