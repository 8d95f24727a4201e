from __future__ import annotations

import pytest

from quayside.errors import QYInvalidSpecError, QYTaskExitError
from quayside.types import ContainerSpec, WorkflowResult, parse_reference


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("alpine", "docker.io/library/alpine:latest"),
        ("alpine:3.19", "docker.io/library/alpine:3.19"),
        ("docker.io/library/alpine:latest", "docker.io/library/alpine:latest"),
        ("index.docker.io/library/alpine", "docker.io/library/alpine:latest"),
        ("ghcr.io/org/tool:v1.2", "ghcr.io/org/tool:v1.2"),
        ("localhost:5000/app", "localhost:5000/app:latest"),
        ("user/app", "docker.io/user/app:latest"),
    ],
)
def test_parse_reference_normalises(ref, expected):
    assert str(parse_reference(ref)) == expected


def test_parse_reference_digest_only():
    digest = "sha256:" + "a" * 64
    ref = parse_reference(f"alpine@{digest}")
    assert ref.tag is None
    assert ref.digest == digest
    assert str(ref) == f"docker.io/library/alpine@{digest}"


@pytest.mark.parametrize("ref", ["", "   ", "Alpine", "alpine:", "alpine@sha256:short", "a//b"])
def test_parse_reference_rejects(ref):
    with pytest.raises(QYInvalidSpecError):
        parse_reference(ref)


def _spec(**kw):
    base = dict(id="my-alpine-container", image="alpine", args=("/bin/sh", "-c", "echo 'Hello'"))
    base.update(kw)
    return ContainerSpec(**base)


def test_valid_spec_passes():
    spec = _spec()
    assert spec.validate() is spec


@pytest.mark.parametrize(
    "changes",
    [
        {"id": ""},
        {"id": "has space"},
        {"id": "-leading"},
        {"id": "x" * 77},
        {"image": "NOT VALID"},
        {"runtime": ""},
        {"args": ()},
        {"args": "/bin/sh"},
        {"root_path": ""},
        {"cwd": "relative"},
    ],
)
def test_invalid_spec_rejected(changes):
    with pytest.raises(QYInvalidSpecError):
        _spec(**changes).validate()


def test_workflow_result_ok_and_raise():
    ok = WorkflowResult(container_id="c", image="i", namespace="default", exit_status=0)
    assert ok.ok
    assert ok.raise_for_status() is ok

    failed = WorkflowResult(container_id="c", image="i", namespace="default", exit_status=2)
    failed.error = QYTaskExitError("exited 2", 2)
    assert not failed.ok
    with pytest.raises(QYTaskExitError) as exc:
        failed.raise_for_status()
    assert exc.value.exit_status == 2
