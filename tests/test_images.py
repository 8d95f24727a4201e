from __future__ import annotations

import pytest

from quayside.core.images import ImagePuller, build_transfer, host_platform, resolve_architecture
from quayside.errors import QYConnectionError, QYPullError, QYRuntimeError
from quayside.types import Platform, parse_reference

from conftest import ALPINE

pytestmark = pytest.mark.anyio


@pytest.mark.parametrize(
    "machine, arch",
    [("x86_64", "amd64"), ("aarch64", "arm64"), ("riscv64", "riscv64"), ("armv7l", "armv7l"), ("", "")],
)
def test_resolve_architecture(machine, arch):
    assert resolve_architecture(machine) == arch


def test_host_platform_uses_mapping():
    assert host_platform(machine="x86_64") == Platform(os="linux", architecture="amd64")


def test_build_transfer_single_platform():
    platform = Platform(os="linux", architecture="amd64")
    transfer = build_transfer("alpine", platform, snapshotter="overlayfs")
    assert transfer.source == ALPINE
    assert transfer.destination == ALPINE
    assert transfer.platforms == (platform,)
    assert len(transfer.unpacks) == 1
    assert transfer.unpacks[0].platform == platform
    assert transfer.unpacks[0].snapshotter == "overlayfs"


async def test_pull_records_image(handle, runtime):
    puller = ImagePuller()
    ref = await puller.pull(handle, "default", "alpine", Platform(os="linux", architecture="amd64"))
    assert ref == parse_reference(ALPINE)
    assert await puller.exists(handle, "default", "alpine")
    assert not await puller.exists(handle, "other", "alpine")
    assert [i.name for i in await puller.list(handle, "default")] == [ALPINE]


async def test_repull_is_a_noop(handle, runtime):
    puller = ImagePuller()
    await puller.pull(handle, "default", ALPINE)
    await puller.pull(handle, "default", ALPINE)
    assert len(await puller.list(handle, "default")) == 1


async def test_pull_failure_not_retried(handle, runtime):
    runtime.pull_failures = 1
    with pytest.raises(QYPullError):
        await ImagePuller().pull(handle, "default", ALPINE)
    assert runtime.pull_calls == 1


async def test_other_daemon_errors_become_pull_errors(handle, runtime, monkeypatch):
    async def broken(namespace, transfer):
        raise QYRuntimeError("unpack failed", operation="transfer")

    monkeypatch.setattr(runtime, "pull_image", broken)
    with pytest.raises(QYPullError) as exc:
        await ImagePuller().pull(handle, "default", ALPINE)
    assert isinstance(exc.value.cause, QYRuntimeError)


async def test_connection_errors_pass_through(handle, runtime, monkeypatch):
    async def down(namespace, transfer):
        raise QYConnectionError("socket closed", operation="transfer")

    monkeypatch.setattr(runtime, "pull_image", down)
    with pytest.raises(QYConnectionError):
        await ImagePuller().pull(handle, "default", ALPINE)
