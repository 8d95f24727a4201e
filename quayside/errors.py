from __future__ import annotations

from typing import Optional


class QYError(Exception):
	exit_code = 1

	def __init__(self, message: str, *, operation: Optional[str] = None, container_id: Optional[str] = None, cause: Optional[BaseException] = None):
		super().__init__(message)
		self.operation = operation
		self.container_id = container_id
		self.cause = cause

	def __str__(self) -> str:
		msg = super().__str__()
		ctx = []
		if self.operation:
			ctx.append(f"op={self.operation}")
		if self.container_id:
			ctx.append(f"container={self.container_id}")
		if self.cause is not None and _message(self.cause) not in msg:
			ctx.append(f"cause={self.cause}")
		return f"{msg} ({', '.join(ctx)})" if ctx else msg


def _message(err: BaseException) -> str:
	if isinstance(err, QYError) and err.args:
		return str(err.args[0])
	return str(err)


class QYConnectionError(QYError, ConnectionError):
	exit_code = 3


class QYPullError(QYError):
	exit_code = 4


class QYInvalidSpecError(QYError, ValueError):
	exit_code = 5


class QYAlreadyExistsError(QYError):
	exit_code = 5


class QYDuplicateContainerError(QYAlreadyExistsError):
	pass


class QYDuplicateTaskError(QYAlreadyExistsError):
	pass


class QYFailedPreconditionError(QYError):
	exit_code = 6


class QYContainerBusyError(QYFailedPreconditionError):
	pass


class QYTaskStillRunningError(QYFailedPreconditionError):
	pass


class QYInvalidStateError(QYFailedPreconditionError):
	pass


class QYNotFoundError(QYError):
	exit_code = 7


class QYContainerNotFoundError(QYNotFoundError):
	pass


class QYWaitTimeout(QYError, TimeoutError):
	exit_code = 8


class QYCancelled(QYError):
	exit_code = 9


class QYTaskExitError(QYError):
	def __init__(self, message: str, exit_status: int, **kwargs):
		super().__init__(message, **kwargs)
		self.exit_status = exit_status


class QYRuntimeError(QYError):
	pass
