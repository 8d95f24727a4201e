from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from quayside.errors import QYInvalidSpecError


DEFAULT_BACKEND = "containerd"
DEFAULT_CONTAINERD_ADDRESS = "/run/containerd/containerd.sock"
DEFAULT_DOCKER_ADDRESS = "unix:///var/run/docker.sock"
DEFAULT_NAMESPACE = "default"
DEFAULT_RUNTIME = "io.containerd.runc.v2"
DEFAULT_SNAPSHOTTER = "overlayfs"
DEFAULT_CONFIG_FILE = Path(os.getenv("HOME", "~")).expanduser() / ".quayside" / "config.json"

# field name -> environment variable
ENV_VARS: Dict[str, str] = {
	"backend": "QY_BACKEND",
	"address": "QY_ADDRESS",
	"namespace": "QY_NAMESPACE",
	"runtime": "QY_RUNTIME",
	"snapshotter": "QY_SNAPSHOTTER",
	"scratch_dir": "QY_SCRATCH_DIR",
	"connect_timeout": "QY_CONNECT_TIMEOUT",
	"wait_timeout": "QY_WAIT_TIMEOUT",
	"stop_timeout": "QY_STOP_TIMEOUT",
	"cleanup_timeout": "QY_CLEANUP_TIMEOUT",
	"pull_attempts": "QY_PULL_ATTEMPTS",
	"pull_backoff": "QY_PULL_BACKOFF",
	"pull_policy": "QY_PULL_POLICY",
	"on_conflict": "QY_ON_CONFLICT",
	"keep_stdio": "QY_KEEP_STDIO",
	"id_prefix": "QY_ID_PREFIX",
}


def default_address(backend: str) -> str:
	return DEFAULT_DOCKER_ADDRESS if backend == "docker" else DEFAULT_CONTAINERD_ADDRESS


class Config(BaseModel):
	"""Client settings.

	Use ``Config.load()`` to layer the JSON config file, ``QY_*`` environment
	variables and explicit overrides (in increasing precedence).
	"""

	model_config = ConfigDict(extra="forbid")

	backend: Literal["containerd", "docker"] = DEFAULT_BACKEND
	address: Optional[str] = Field(default=None, description="Daemon socket; backend default when unset")
	namespace: str = DEFAULT_NAMESPACE
	runtime: str = DEFAULT_RUNTIME
	snapshotter: str = DEFAULT_SNAPSHOTTER
	scratch_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()) / "quayside")
	connect_timeout: float = Field(default=5.0, gt=0)
	wait_timeout: Optional[float] = Field(default=None, gt=0)
	stop_timeout: float = Field(default=10.0, gt=0)
	cleanup_timeout: float = Field(default=30.0, gt=0)
	pull_attempts: int = Field(default=3, ge=1)
	pull_backoff: float = Field(default=1.0, ge=0)
	pull_policy: Literal["always", "missing"] = "always"
	on_conflict: Literal["fail", "replace"] = "fail"
	keep_stdio: bool = False
	id_prefix: str = "qy"

	@field_validator("namespace", "runtime", "id_prefix")
	@classmethod
	def _non_empty(cls, v: str) -> str:
		if not v or not v.strip():
			raise ValueError("must not be empty")
		return v.strip()

	@model_validator(mode="after")
	def _fill_address(self) -> "Config":
		if not self.address:
			self.address = default_address(self.backend)
		return self

	@classmethod
	def load(cls, path: Optional[Path | str] = None, **overrides: Any) -> "Config":
		"""Build a config from file, environment and explicit overrides."""
		data: Dict[str, Any] = {}
		file_path = Path(path) if path else Path(os.getenv("QY_CONFIG", str(DEFAULT_CONFIG_FILE)))
		data.update(_read_config_file(file_path, required=path is not None))
		data.update(_from_env())
		data.update({k: v for k, v in overrides.items() if v is not None})
		try:
			return cls(**data)
		except ValidationError as e:
			raise QYInvalidSpecError(f"invalid configuration: {e}", operation="config") from e


def _from_env() -> Dict[str, Any]:
	out: Dict[str, Any] = {}
	for name, var in ENV_VARS.items():
		value = os.getenv(var)
		if value is not None and value != "":
			out[name] = value
	return out


def _read_config_file(path: Path, required: bool = False) -> Dict[str, Any]:
	if not path.exists():
		if required:
			raise QYInvalidSpecError(f"config file {path} does not exist", operation="config")
		return {}
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except (OSError, ValueError) as e:
		raise QYInvalidSpecError(f"cannot read config file {path}: {e}", operation="config", cause=e) from e
	if not isinstance(data, dict):
		raise QYInvalidSpecError(f"config file {path} must contain a JSON object", operation="config")
	return data
