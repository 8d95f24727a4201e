from __future__ import annotations

import pytest

from quayside.config import Config
from quayside.core import transport
from quayside.core.transport import Handle, connect
from quayside.errors import QYConnectionError
from quayside.runtime import containerd_runtime, docker_runtime

from conftest import FakeRuntime

pytestmark = pytest.mark.anyio


@pytest.fixture()
def fake_backend(monkeypatch):
    created = []

    def make(backend, address, cfg):
        rt = FakeRuntime(address or "unix:///run/fake.sock")
        created.append(rt)
        return rt

    monkeypatch.setattr(transport, "_make_runtime", make)
    return created


async def test_connect_returns_open_handle(fake_backend):
    handle = await connect("unix:///run/fake.sock", config=Config())
    assert handle.version == "fake-1.0"
    assert not handle.closed
    assert handle.runtime is fake_backend[0]
    await handle.close()


async def test_close_is_idempotent_and_blocks_use(fake_backend):
    async with await connect(config=Config()) as handle:
        pass
    assert handle.closed
    assert fake_backend[0].closed
    await handle.close()
    with pytest.raises(QYConnectionError):
        handle.runtime


async def test_unreachable_daemon(monkeypatch):
    rt = FakeRuntime()
    rt.unreachable = True
    monkeypatch.setattr(transport, "_make_runtime", lambda backend, address, cfg: rt)
    with pytest.raises(QYConnectionError):
        await connect(config=Config())
    assert rt.closed


async def test_slow_daemon_times_out(monkeypatch):
    rt = FakeRuntime()
    rt.ping_delay = 5
    monkeypatch.setattr(transport, "_make_runtime", lambda backend, address, cfg: rt)
    with pytest.raises(QYConnectionError, match="did not answer"):
        await connect(config=Config(connect_timeout=0.05))
    assert rt.closed


async def test_unknown_backend():
    with pytest.raises(QYConnectionError):
        await connect(backend="lxc", config=Config())


@pytest.mark.parametrize("address", ["", "   ", "run/containerd.sock", "tcp://127.0.0.1:1234", "unix://relative.sock"])
def test_containerd_rejects_malformed_addresses(address):
    with pytest.raises(QYConnectionError):
        containerd_runtime.normalize_address(address)


@pytest.mark.parametrize(
    "address, target",
    [
        ("/run/containerd/containerd.sock", "unix:///run/containerd/containerd.sock"),
        ("unix:///run/containerd/containerd.sock", "unix:///run/containerd/containerd.sock"),
        ("unix:/run/k3s/containerd.sock", "unix:///run/k3s/containerd.sock"),
    ],
)
def test_containerd_address_forms(address, target):
    assert containerd_runtime.normalize_address(address) == target


@pytest.mark.parametrize("address", ["", "docker.sock", "ftp://host"])
def test_docker_rejects_malformed_addresses(address):
    with pytest.raises(QYConnectionError):
        docker_runtime.normalize_address(address)


def test_docker_accepts_socket_path():
    assert docker_runtime.normalize_address("/var/run/docker.sock") == "unix:///var/run/docker.sock"


def test_handle_reports_backend():
    handle = Handle(FakeRuntime("unix:///x.sock"))
    assert handle.backend == "fake"
    assert handle.address == "unix:///x.sock"
