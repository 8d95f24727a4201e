from __future__ import annotations

import dataclasses

import pytest

from quayside.core.containers import ContainerManager
from quayside.errors import (
    QYContainerBusyError,
    QYContainerNotFoundError,
    QYDuplicateContainerError,
    QYFailedPreconditionError,
    QYInvalidSpecError,
    QYNotFoundError,
)
from quayside.types import StdioPaths

from conftest import ALPINE

pytestmark = pytest.mark.anyio


@pytest.fixture()
def manager(runtime):
    runtime.seed_image("default", ALPINE)
    return ContainerManager()


async def test_create_then_delete_leaves_nothing(manager, handle, runtime, alpine_spec):
    container = await manager.create(handle, "default", alpine_spec)
    assert container.id == "my-alpine-container"
    assert await manager.exists(handle, "default", container.id)

    await manager.delete(handle, "default", container.id)
    assert not await manager.exists(handle, "default", container.id)
    assert runtime.containers == {}


async def test_duplicate_id_leaves_original_untouched(manager, handle, runtime, alpine_spec):
    original = await manager.create(handle, "default", alpine_spec)
    other = dataclasses.replace(alpine_spec, args=("/bin/true",))
    with pytest.raises(QYDuplicateContainerError):
        await manager.create(handle, "default", other)
    stored = await manager.get(handle, "default", alpine_spec.id)
    assert stored is original
    assert tuple(stored.spec.args) == tuple(alpine_spec.args)


async def test_same_id_in_other_namespace(manager, handle, runtime, alpine_spec):
    runtime.seed_image("other", ALPINE)
    await manager.create(handle, "default", alpine_spec)
    await manager.create(handle, "other", alpine_spec)
    assert len(runtime.containers) == 2


async def test_invalid_spec_never_reaches_daemon(manager, handle, runtime, alpine_spec):
    with pytest.raises(QYInvalidSpecError):
        await manager.create(handle, "default", dataclasses.replace(alpine_spec, args=()))
    assert runtime.events == []


async def test_delete_twice(manager, handle, alpine_spec):
    await manager.create(handle, "default", alpine_spec)
    await manager.delete(handle, "default", alpine_spec.id)
    with pytest.raises(QYNotFoundError):
        await manager.delete(handle, "default", alpine_spec.id)


async def test_get_missing(manager, handle):
    with pytest.raises(QYContainerNotFoundError):
        await manager.get(handle, "default", "ghost")


async def test_delete_with_task_is_busy(manager, handle, runtime, alpine_spec):
    await manager.create(handle, "default", alpine_spec)
    await runtime.create_task("default", alpine_spec.id, StdioPaths())
    with pytest.raises(QYContainerBusyError):
        await manager.delete(handle, "default", alpine_spec.id)
    assert await manager.exists(handle, "default", alpine_spec.id)


async def test_daemon_refusal_keeps_one_context(manager, handle, runtime, alpine_spec, monkeypatch):
    await manager.create(handle, "default", alpine_spec)

    async def refuse(namespace, container_id):
        raise QYFailedPreconditionError("container has active mounts", operation="delete_container", container_id=container_id)

    monkeypatch.setattr(runtime, "delete_container", refuse)
    with pytest.raises(QYContainerBusyError) as exc:
        await manager.delete(handle, "default", alpine_spec.id)
    assert str(exc.value) == "container has active mounts (op=delete_container, container=my-alpine-container)"
