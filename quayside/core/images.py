from __future__ import annotations

import logging
import platform as _host
from typing import List, Optional

from quayside.core.transport import Handle
from quayside.errors import QYConnectionError, QYError, QYPullError
from quayside.types import ImageInfo, ImageReference, Platform, TransferDescriptor, UnpackConfiguration, parse_reference

logger = logging.getLogger(__name__)

# host machine name -> OCI architecture
ARCH_MAP = {
	"x86_64": "amd64",
	"aarch64": "arm64",
}


def resolve_architecture(machine: Optional[str] = None) -> str:
	"""Map a host architecture name to the runtime's naming; unknown names pass through."""
	arch = machine if machine is not None else _host.machine()
	return ARCH_MAP.get(arch, arch)


def host_platform(os_name: str = "linux", machine: Optional[str] = None) -> Platform:
	return Platform(os=os_name, architecture=resolve_architecture(machine))


def build_transfer(reference: ImageReference | str, platform: Platform, snapshotter: str = "") -> TransferDescriptor:
	"""Registry source → local image store entry for exactly one platform."""
	ref = parse_reference(reference) if isinstance(reference, str) else reference
	name = str(ref)
	return TransferDescriptor(
		source=name,
		destination=name,
		platforms=(platform,),
		unpacks=(UnpackConfiguration(platform=platform, snapshotter=snapshotter),),
	)


class ImagePuller:
	"""Requests image transfers from the daemon. Never retries on its own."""

	def __init__(self, snapshotter: str = ""):
		self.snapshotter = snapshotter

	async def pull(self, handle: Handle, namespace: str, image_reference: ImageReference | str, platform: Optional[Platform] = None) -> ImageReference:
		ref = parse_reference(image_reference) if isinstance(image_reference, str) else image_reference
		target = platform or host_platform()
		transfer = build_transfer(ref, target, self.snapshotter)
		logger.info("Pulling %s for %s", ref, target)
		try:
			await handle.runtime.pull_image(namespace, transfer)
		except (QYPullError, QYConnectionError):
			raise
		except QYError as e:
			raise QYPullError(f"failed to pull {ref}: {e}", operation="pull", cause=e) from e
		logger.info("Pulled %s", ref)
		return ref

	async def exists(self, handle: Handle, namespace: str, image_reference: ImageReference | str) -> bool:
		ref = parse_reference(image_reference) if isinstance(image_reference, str) else image_reference
		return await handle.runtime.image_exists(namespace, str(ref))

	async def list(self, handle: Handle, namespace: str) -> List[ImageInfo]:
		images = await handle.runtime.list_images(namespace)
		for image in images:
			logger.debug("Image: %s (%s)", image.name, image.digest)
		return images
