from quayside.config import Config
from quayside.core.containers import ContainerManager
from quayside.core.images import ImagePuller
from quayside.core.orchestrator import Orchestrator
from quayside.core.tasks import TaskManager
from quayside.core.transport import Handle, connect
from quayside.types import ContainerSpec, TaskState, WorkflowResult, WorkflowStep

__all__ = [
	"Config",
	"ContainerManager",
	"ContainerSpec",
	"Handle",
	"ImagePuller",
	"Orchestrator",
	"TaskManager",
	"TaskState",
	"WorkflowResult",
	"WorkflowStep",
	"connect",
]
