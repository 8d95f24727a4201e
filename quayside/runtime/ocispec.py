"""OCI runtime spec generation for containers created through containerd."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from quayside.types import ContainerSpec

logger = logging.getLogger(__name__)

OCI_VERSION = "1.1.0"
DEFAULT_PATH = "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

DEFAULT_CAPABILITIES = [
    "CAP_CHOWN",
    "CAP_DAC_OVERRIDE",
    "CAP_FSETID",
    "CAP_FOWNER",
    "CAP_MKNOD",
    "CAP_NET_RAW",
    "CAP_SETGID",
    "CAP_SETUID",
    "CAP_SETFCAP",
    "CAP_SETPCAP",
    "CAP_NET_BIND_SERVICE",
    "CAP_SYS_CHROOT",
    "CAP_KILL",
    "CAP_AUDIT_WRITE",
]

MASKED_PATHS = [
    "/proc/acpi",
    "/proc/asound",
    "/proc/kcore",
    "/proc/keys",
    "/proc/latency_stats",
    "/proc/timer_list",
    "/proc/timer_stats",
    "/proc/sched_debug",
    "/sys/firmware",
    "/proc/scsi",
]

READONLY_PATHS = [
    "/proc/bus",
    "/proc/fs",
    "/proc/irq",
    "/proc/sys",
    "/proc/sysrq-trigger",
]


def _default_mounts() -> List[Dict[str, Any]]:
    return [
        {"destination": "/proc", "type": "proc", "source": "proc", "options": ["nosuid", "noexec", "nodev"]},
        {"destination": "/dev", "type": "tmpfs", "source": "tmpfs", "options": ["nosuid", "strictatime", "mode=755", "size=65536k"]},
        {"destination": "/dev/pts", "type": "devpts", "source": "devpts", "options": ["nosuid", "noexec", "newinstance", "ptmxmode=0666", "mode=0620", "gid=5"]},
        {"destination": "/dev/shm", "type": "tmpfs", "source": "shm", "options": ["nosuid", "noexec", "nodev", "mode=1777", "size=65536k"]},
        {"destination": "/dev/mqueue", "type": "mqueue", "source": "mqueue", "options": ["nosuid", "noexec", "nodev"]},
        {"destination": "/sys", "type": "sysfs", "source": "sysfs", "options": ["nosuid", "noexec", "nodev", "ro"]},
        {"destination": "/run", "type": "tmpfs", "source": "tmpfs", "options": ["nosuid", "strictatime", "mode=755", "size=65536k"]},
    ]


def _parse_user(user: str) -> Optional[Dict[str, int]]:
    # Only numeric uid[:gid]; names need the image's /etc/passwd
    if not user:
        return None
    uid, _, gid = user.partition(":")
    if not uid.isdigit() or (gid and not gid.isdigit()):
        logger.debug("Ignoring non-numeric image user %r", user)
        return None
    return {"uid": int(uid), "gid": int(gid or 0)}


def merge_env(image_env: Optional[List[str]], env: Dict[str, str]) -> List[str]:
    """Image env first, then explicit overrides, keyed by variable name."""
    merged: Dict[str, str] = {}
    for item in image_env or [DEFAULT_PATH]:
        key, _, value = item.partition("=")
        merged[key] = value
    merged.update(env)
    if "PATH" not in merged:
        merged["PATH"] = DEFAULT_PATH.partition("=")[2]
    return [f"{k}={v}" for k, v in merged.items()]


def build_runtime_spec(spec: ContainerSpec, namespace: str, image_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the OCI runtime spec document for ``spec``.

    ``image_config`` is the ``config`` section of the image's config blob;
    its Env, WorkingDir and User seed the process, explicit spec values win.
    """
    cfg = image_config or {}
    user = _parse_user(cfg.get("User", "")) or {"uid": 0, "gid": 0}
    cwd = spec.cwd or cfg.get("WorkingDir") or "/"

    namespaces = [{"type": t} for t in ("pid", "ipc", "uts", "mount")]
    mounts = _default_mounts()
    if spec.host_network:
        for path in ("/etc/hosts", "/etc/resolv.conf"):
            mounts.append({"destination": path, "type": "bind", "source": path, "options": ["rbind", "ro"]})
    else:
        namespaces.append({"type": "network"})

    return {
        "ociVersion": OCI_VERSION,
        "process": {
            "terminal": spec.terminal,
            "user": user,
            "args": list(spec.args),
            "env": merge_env(cfg.get("Env"), dict(spec.env)),
            "cwd": cwd,
            "capabilities": {
                "bounding": list(DEFAULT_CAPABILITIES),
                "effective": list(DEFAULT_CAPABILITIES),
                "permitted": list(DEFAULT_CAPABILITIES),
            },
            "rlimits": [{"type": "RLIMIT_NOFILE", "hard": 1024, "soft": 1024}],
            "noNewPrivileges": True,
        },
        "root": {"path": spec.root_path, "readonly": spec.root_readonly},
        "hostname": spec.id,
        "mounts": mounts,
        "linux": {
            "cgroupsPath": f"/{namespace}/{spec.id}",
            "resources": {"devices": [{"allow": False, "access": "rwm"}]},
            "namespaces": namespaces,
            "maskedPaths": list(MASKED_PATHS),
            "readonlyPaths": list(READONLY_PATHS),
        },
    }


def encode(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def decode_spec(container_id: str, image: str, runtime: str, raw: bytes, labels: Optional[Dict[str, str]] = None) -> ContainerSpec:
    """Rebuild a ContainerSpec from a stored runtime spec document."""
    doc = json.loads(raw.decode("utf-8")) if raw else {}
    process = doc.get("process", {})
    root = doc.get("root", {})
    env = {}
    for item in process.get("env", []):
        key, _, value = item.partition("=")
        env[key] = value
    host_network = not any(ns.get("type") == "network" for ns in doc.get("linux", {}).get("namespaces", []))
    return ContainerSpec(
        id=container_id,
        image=image,
        args=tuple(process.get("args", ())),
        runtime=runtime,
        root_path=root.get("path", "rootfs"),
        root_readonly=bool(root.get("readonly", False)),
        env=env,
        cwd=process.get("cwd"),
        terminal=bool(process.get("terminal", False)),
        host_network=host_network if doc else False,
        labels=dict(labels or {}),
    )
