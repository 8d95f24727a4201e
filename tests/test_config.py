from __future__ import annotations

import json
from pathlib import Path

import pytest

from quayside.config import DEFAULT_CONTAINERD_ADDRESS, DEFAULT_DOCKER_ADDRESS, ENV_VARS, Config
from quayside.errors import QYInvalidSpecError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("QY_CONFIG", str(tmp_path / "missing.json"))


def test_defaults():
    cfg = Config.load()
    assert cfg.backend == "containerd"
    assert cfg.address == DEFAULT_CONTAINERD_ADDRESS
    assert cfg.namespace == "default"
    assert cfg.runtime == "io.containerd.runc.v2"
    assert cfg.snapshotter == "overlayfs"
    assert cfg.connect_timeout == 5.0
    assert cfg.wait_timeout is None
    assert cfg.pull_attempts == 3
    assert cfg.pull_policy == "always"
    assert cfg.on_conflict == "fail"
    assert cfg.id_prefix == "qy"


def test_docker_backend_gets_docker_socket():
    assert Config(backend="docker").address == DEFAULT_DOCKER_ADDRESS


def test_precedence_file_env_kwargs(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"namespace": "from-file", "pull_attempts": 5, "snapshotter": "native"}))
    monkeypatch.setenv("QY_CONFIG", str(path))
    monkeypatch.setenv("QY_NAMESPACE", "from-env")
    monkeypatch.setenv("QY_PULL_ATTEMPTS", "7")

    cfg = Config.load(pull_attempts=2)
    assert cfg.snapshotter == "native"
    assert cfg.namespace == "from-env"
    assert cfg.pull_attempts == 2


def test_env_values_are_coerced(monkeypatch):
    monkeypatch.setenv("QY_KEEP_STDIO", "true")
    monkeypatch.setenv("QY_WAIT_TIMEOUT", "2.5")
    monkeypatch.setenv("QY_SCRATCH_DIR", "/var/tmp/qy")
    cfg = Config.load()
    assert cfg.keep_stdio is True
    assert cfg.wait_timeout == 2.5
    assert cfg.scratch_dir == Path("/var/tmp/qy")


@pytest.mark.parametrize(
    "overrides",
    [
        {"backend": "podman"},
        {"namespace": "  "},
        {"pull_attempts": 0},
        {"connect_timeout": 0},
        {"pull_policy": "sometimes"},
        {"on_conflict": "ignore"},
        {"unknown_field": 1},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(QYInvalidSpecError):
        Config.load(**overrides)


def test_explicit_missing_file_is_an_error(tmp_path):
    with pytest.raises(QYInvalidSpecError):
        Config.load(tmp_path / "nope.json")


def test_malformed_file_is_an_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2")
    with pytest.raises(QYInvalidSpecError):
        Config.load(path)
