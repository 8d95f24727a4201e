from __future__ import annotations

import logging
from typing import Optional

import anyio

from quayside.config import Config
from quayside.errors import QYConnectionError, QYError
from quayside.runtime import BACKENDS, ContainerdRuntime, RuntimeBackend

logger = logging.getLogger(__name__)


class Handle:
	"""An open connection to the runtime daemon, shared by every manager.

	Safe for concurrent use by independent workflows. Closing is idempotent;
	any use after close raises ``QYConnectionError``.
	"""

	def __init__(self, runtime: RuntimeBackend, version: str = ""):
		self._runtime = runtime
		self.version = version
		self._closed = False

	@property
	def address(self) -> str:
		return self._runtime.address

	@property
	def backend(self) -> str:
		return self._runtime.name

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def runtime(self) -> RuntimeBackend:
		if self._closed:
			raise QYConnectionError(f"handle to {self.address} is closed", operation="handle")
		return self._runtime

	async def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		await self._runtime.close()
		logger.debug("Closed %s handle to %s", self.backend, self.address)

	async def __aenter__(self) -> "Handle":
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.close()


def _make_runtime(backend: str, address: Optional[str], cfg: Config) -> RuntimeBackend:
	cls = BACKENDS.get(backend)
	if cls is None:
		raise QYConnectionError(f"unknown backend {backend!r}", operation="connect")
	if cls is ContainerdRuntime:
		return ContainerdRuntime(address, snapshotter=cfg.snapshotter, connect_timeout=cfg.connect_timeout)
	return cls(address, connect_timeout=cfg.connect_timeout)


async def connect(address: Optional[str] = None, backend: Optional[str] = None, config: Optional[Config] = None) -> Handle:
	"""Open a handle to the daemon at ``address`` and check that it answers."""
	cfg = config or Config.load()
	name = backend or cfg.backend
	if address is None and name == cfg.backend:
		address = cfg.address
	runtime = _make_runtime(name, address, cfg)
	try:
		with anyio.fail_after(cfg.connect_timeout):
			version = await runtime.ping()
	except TimeoutError as e:
		await runtime.close()
		raise QYConnectionError(f"{runtime.address} did not answer within {cfg.connect_timeout}s", operation="connect", cause=e) from e
	except QYError as e:
		await runtime.close()
		if isinstance(e, QYConnectionError):
			raise
		raise QYConnectionError(f"cannot talk to {runtime.address}: {e}", operation="connect", cause=e) from e
	logger.info("Connected to %s %s at %s", name, version or "daemon", runtime.address)
	return Handle(runtime, version)
