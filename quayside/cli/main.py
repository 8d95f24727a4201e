from __future__ import annotations

import logging
from typing import List, NoReturn, Optional

import anyio
import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler

from quayside.config import Config
from quayside.core.orchestrator import DEFAULT_ARGS, Orchestrator
from quayside.errors import QYCancelled, QYContainerNotFoundError, QYError
from quayside.types import ContainerSpec, WorkflowResult


app = typer.Typer(name="qy", help="Quayside CLI: run containers through containerd or Docker")
err_console = Console(stderr=True)

DEFAULT_IMAGE = "docker.io/library/alpine:latest"


def setup_logging(level: str = "INFO") -> None:
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(console=err_console, show_path=False)],
		force=True,
	)
	for name in ("docker", "urllib3"):
		logging.getLogger(name).setLevel(logging.WARNING)


def _fail(err: QYError) -> NoReturn:
	err_console.print(f"[red]error:[/red] {err}")
	raise typer.Exit(err.exit_code)


def _config(**overrides) -> Config:
	try:
		return Config.load(**overrides)
	except QYError as e:
		_fail(e)


async def _run(cfg: Config, image: str, spec: ContainerSpec, timeout: Optional[float]) -> WorkflowResult:
	async with Orchestrator(config=cfg) as orch:
		return await orch.run(image, spec, timeout=timeout)


@app.command()
def run(
	args: Optional[List[str]] = typer.Argument(None, help="Process args (default: /bin/sh -c \"echo 'Hello'\")"),
	image: str = typer.Option(DEFAULT_IMAGE, "--image", help="Image reference"),
	container_id: str = typer.Option("", "--container-id", help="Container id (generated when empty)"),
	namespace: Optional[str] = typer.Option(None, "--namespace"),
	backend: Optional[str] = typer.Option(None, "--backend", help="containerd or docker"),
	address: Optional[str] = typer.Option(None, "--address", help="Daemon socket"),
	timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the task"),
	replace: bool = typer.Option(False, "--replace", help="Replace an existing container with the same id"),
	keep_stdio: bool = typer.Option(False, "--keep-stdio", help="Keep the stdio files after the run"),
	log_level: str = typer.Option("INFO", "--log-level", envvar="QY_LOG_LEVEL"),
):
	"""Pull an image, run one process in it and remove everything afterwards."""
	setup_logging(log_level)
	cfg = _config(
		backend=backend,
		address=address,
		namespace=namespace,
		on_conflict="replace" if replace else None,
		keep_stdio=True if keep_stdio else None,
	)
	spec = ContainerSpec(id=container_id, image=image, args=tuple(args or DEFAULT_ARGS), runtime=cfg.runtime)
	try:
		result = anyio.run(_run, cfg, image, spec, timeout)
	except QYError as e:
		_fail(e)
	except KeyboardInterrupt:
		_fail(QYCancelled("interrupted", operation="run", container_id=container_id or None))
	typer.echo(result.stdout, nl=False)
	if result.stderr:
		typer.echo(result.stderr, nl=False, err=True)
	for err in result.cleanup_errors:
		err_console.print(f"[yellow]cleanup:[/yellow] {err}")
	if result.error is not None:
		_fail(result.error)
	logging.getLogger(__name__).info("Container %s exited with status %s", result.container_id, result.exit_status)


async def _images(cfg: Config):
	async with Orchestrator(config=cfg) as orch:
		return await orch.images.list(orch.handle, cfg.namespace)


@app.command()
def images(
	namespace: Optional[str] = typer.Option(None, "--namespace"),
	backend: Optional[str] = typer.Option(None, "--backend"),
	address: Optional[str] = typer.Option(None, "--address"),
	log_level: str = typer.Option("WARNING", "--log-level", envvar="QY_LOG_LEVEL"),
):
	"""List images in a namespace."""
	setup_logging(log_level)
	cfg = _config(backend=backend, address=address, namespace=namespace)
	try:
		found = anyio.run(_images, cfg)
	except QYError as e:
		_fail(e)
	print([{"name": i.name, "digest": i.digest, "size": i.size} for i in found])


async def _rm(cfg: Config, container_id: str) -> List[QYError]:
	async with Orchestrator(config=cfg) as orch:
		if not await orch.containers.exists(orch.handle, cfg.namespace, container_id):
			raise QYContainerNotFoundError(f"container {container_id} not found in namespace {cfg.namespace}", operation="rm", container_id=container_id)
		return await orch.cleanup(orch.handle, cfg.namespace, container_id)


@app.command()
def rm(
	container_id: str,
	namespace: Optional[str] = typer.Option(None, "--namespace"),
	backend: Optional[str] = typer.Option(None, "--backend"),
	address: Optional[str] = typer.Option(None, "--address"),
	log_level: str = typer.Option("INFO", "--log-level", envvar="QY_LOG_LEVEL"),
):
	"""Stop and remove a leftover container and its task."""
	setup_logging(log_level)
	cfg = _config(backend=backend, address=address, namespace=namespace)
	try:
		errors = anyio.run(_rm, cfg, container_id)
	except QYError as e:
		_fail(e)
	if errors:
		_fail(errors[0])
	print({"ok": True, "id": container_id})


if __name__ == "__main__":
	app()
