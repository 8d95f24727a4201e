from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, Optional

import anyio


async def touch(path: Path) -> Path:
	apath = anyio.Path(path)
	await apath.parent.mkdir(parents=True, exist_ok=True)
	await apath.touch(exist_ok=True)
	return path


async def read_text(path: Optional[Path]) -> str:
	if path is None:
		return ""
	apath = anyio.Path(path)
	if not await apath.exists():
		return ""
	return await apath.read_text(encoding="utf-8", errors="replace")


def remove_files(paths: Iterable[Path], root: Optional[Path] = None) -> None:
	for p in paths:
		p.unlink(missing_ok=True)
	if root is not None and root.exists() and not any(root.iterdir()):
		shutil.rmtree(root, ignore_errors=True)
