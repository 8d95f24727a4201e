"""Runtime daemon backends: containerd (gRPC) and Docker (SDK)."""

from quayside.runtime.base import RuntimeBackend
from quayside.runtime.containerd_runtime import ContainerdRuntime
from quayside.runtime.docker_runtime import DockerRuntime

BACKENDS = {
    "containerd": ContainerdRuntime,
    "docker": DockerRuntime,
}

__all__ = [
    "BACKENDS",
    "RuntimeBackend",
    "ContainerdRuntime",
    "DockerRuntime",
]
