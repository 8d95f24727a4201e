from quayside.core.containers import ContainerManager
from quayside.core.images import ImagePuller, build_transfer, host_platform, resolve_architecture
from quayside.core.orchestrator import Orchestrator
from quayside.core.tasks import TaskManager
from quayside.core.transport import Handle, connect

__all__ = [
	"ContainerManager",
	"Handle",
	"ImagePuller",
	"Orchestrator",
	"TaskManager",
	"build_transfer",
	"connect",
	"host_platform",
	"resolve_architecture",
]
