from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from quayside.errors import QYError, QYInvalidSpecError


DEFAULT_RUNTIME = "io.containerd.runc.v2"
DEFAULT_TAG = "latest"
DOCKER_REGISTRY = "docker.io"

# containerd identifiers: alphanumerics joined by single separators
_ID_RE = re.compile(r"^[A-Za-z0-9]+(?:[._-][A-Za-z0-9]+)*$")
_ID_MAX = 76
_REPO_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]{32,}$")


class TaskState(Enum):
	"""Task lifecycle states."""
	CREATED = "created"
	RUNNING = "running"
	EXITED = "exited"
	DELETED = "deleted"


@dataclass(frozen=True)
class ImageReference:
	registry: str
	repository: str
	tag: Optional[str] = None
	digest: Optional[str] = None

	@property
	def name(self) -> str:
		return f"{self.registry}/{self.repository}"

	def __str__(self) -> str:
		ref = self.name
		if self.tag:
			ref += f":{self.tag}"
		if self.digest:
			ref += f"@{self.digest}"
		return ref


def parse_reference(ref: str) -> ImageReference:
	"""Parse and normalise an image reference.

	``alpine`` becomes ``docker.io/library/alpine:latest``; a reference with a
	digest and no tag keeps only the digest.
	"""
	if not isinstance(ref, str) or not ref.strip():
		raise QYInvalidSpecError("image reference must be a non-empty string", operation="parse_reference")
	raw = ref.strip()
	remainder, digest = raw, None
	if "@" in remainder:
		remainder, digest = remainder.rsplit("@", 1)
		if not _DIGEST_RE.match(digest):
			raise QYInvalidSpecError(f"invalid digest in image reference {ref!r}", operation="parse_reference")
	tag = None
	last = remainder.rsplit("/", 1)[-1]
	if ":" in last:
		remainder, tag = remainder.rsplit(":", 1)
		if not _TAG_RE.match(tag):
			raise QYInvalidSpecError(f"invalid tag in image reference {ref!r}", operation="parse_reference")
	parts = remainder.split("/")
	if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
		registry, path = parts[0], parts[1:]
	else:
		registry, path = DOCKER_REGISTRY, parts
	if registry in {"index.docker.io", "registry-1.docker.io"}:
		registry = DOCKER_REGISTRY
	if registry == DOCKER_REGISTRY and len(path) == 1:
		path = ["library", *path]
	for component in path:
		if not _REPO_COMPONENT_RE.match(component):
			raise QYInvalidSpecError(f"invalid repository in image reference {ref!r}", operation="parse_reference")
	if tag is None and digest is None:
		tag = DEFAULT_TAG
	return ImageReference(registry=registry, repository="/".join(path), tag=tag, digest=digest)


@dataclass(frozen=True)
class Platform:
	os: str
	architecture: str
	variant: str = ""
	os_version: str = ""

	def __str__(self) -> str:
		s = f"{self.os}/{self.architecture}"
		return f"{s}/{self.variant}" if self.variant else s


@dataclass(frozen=True)
class UnpackConfiguration:
	platform: Platform
	snapshotter: str = ""


@dataclass(frozen=True)
class TransferDescriptor:
	"""Registry → local image store transfer request."""
	source: str
	destination: str
	platforms: tuple[Platform, ...]
	unpacks: tuple[UnpackConfiguration, ...]


@dataclass(frozen=True)
class ImageInfo:
	name: str
	digest: str
	media_type: str = ""
	size: int = 0


@dataclass(frozen=True)
class ContainerSpec:
	"""Everything needed to create a container, checked before submission."""
	id: str
	image: str
	args: Sequence[str]
	runtime: str = DEFAULT_RUNTIME
	root_path: str = "rootfs"
	root_readonly: bool = False
	env: Mapping[str, str] = field(default_factory=dict)
	cwd: Optional[str] = None
	terminal: bool = False
	host_network: bool = False
	labels: Mapping[str, str] = field(default_factory=dict)

	def validate(self) -> "ContainerSpec":
		if not isinstance(self.id, str) or not _ID_RE.match(self.id) or len(self.id) > _ID_MAX:
			raise QYInvalidSpecError(f"invalid container id {self.id!r}", operation="validate", container_id=self.id or None)
		try:
			parse_reference(self.image)
		except QYInvalidSpecError as e:
			raise QYInvalidSpecError(str(e), operation="validate", container_id=self.id) from e
		if not self.runtime:
			raise QYInvalidSpecError("runtime name is required", operation="validate", container_id=self.id)
		if isinstance(self.args, (str, bytes)) or not self.args or not all(isinstance(a, str) for a in self.args):
			raise QYInvalidSpecError("process args must be a non-empty sequence of strings", operation="validate", container_id=self.id)
		if not self.root_path:
			raise QYInvalidSpecError("root filesystem path is required", operation="validate", container_id=self.id)
		if self.cwd is not None and not self.cwd.startswith("/"):
			raise QYInvalidSpecError("cwd must be an absolute path", operation="validate", container_id=self.id)
		return self


@dataclass
class Container:
	id: str
	image: str
	runtime: str
	spec: ContainerSpec
	labels: Dict[str, str] = field(default_factory=dict)
	snapshot_key: Optional[str] = None


@dataclass(frozen=True)
class StdioPaths:
	stdin: Optional[Path] = None
	stdout: Optional[Path] = None
	stderr: Optional[Path] = None

	def paths(self) -> List[Path]:
		return [p for p in (self.stdin, self.stdout, self.stderr) if p is not None]


@dataclass
class TaskHandle:
	namespace: str
	container_id: str
	stdio: StdioPaths = field(default_factory=StdioPaths)
	terminal: bool = False
	pid: Optional[int] = None
	exit_status: Optional[int] = None
	exited_at: Optional[datetime] = None
	state: TaskState = TaskState.CREATED
	owns_stdio: bool = False

	@property
	def stdin(self) -> Optional[Path]:
		return self.stdio.stdin

	@property
	def stdout(self) -> Optional[Path]:
		return self.stdio.stdout

	@property
	def stderr(self) -> Optional[Path]:
		return self.stdio.stderr


class WorkflowStep(Enum):
	PULL = "pull"
	CREATE_CONTAINER = "create_container"
	CREATE_TASK = "create_task"
	START_TASK = "start_task"
	WAIT_TASK = "wait_task"
	CAPTURE_OUTPUT = "capture_output"
	DELETE_TASK = "delete_task"
	DELETE_CONTAINER = "delete_container"


@dataclass
class WorkflowResult:
	container_id: str
	image: str
	namespace: str
	exit_status: Optional[int] = None
	stdout: str = ""
	stderr: str = ""
	error: Optional[QYError] = None
	failed_step: Optional[WorkflowStep] = None
	completed: List[WorkflowStep] = field(default_factory=list)
	cleanup_errors: List[QYError] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return self.error is None and self.exit_status == 0

	def raise_for_status(self) -> "WorkflowResult":
		if self.error is not None:
			raise self.error
		return self
