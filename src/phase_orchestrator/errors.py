"""Error taxonomy shared by the orchestrator components."""


class OrchestratorError(Exception):
	"""Base class for every error raised by the orchestrator."""
	pass


class InvalidRequest(OrchestratorError):
	"""Raised when a task is started with a malformed request."""
	pass


class InvalidTransition(OrchestratorError):
	"""Raised when the state machine is asked for a move it cannot make."""
	pass


class UnknownCapability(OrchestratorError):
	"""Raised when a capability name is not in the registry."""
	pass


class CapabilityNotPermittedInState(OrchestratorError):
	"""Raised when a mutating capability is invoked outside of implementation."""
	pass


class DispatchError(OrchestratorError):
	"""Raised when a capability call fails."""

	def __init__(self, message: str, *, capability: str = "", retriable: bool = True):
		super().__init__(message)
		self.capability = capability
		self.retriable = retriable


class DispatchTimeout(DispatchError):
	"""Raised when a capability call exceeds its timeout."""
	pass


class NoPendingGate(OrchestratorError):
	"""Raised when a gate decision arrives but no gate is open."""
	pass


class AlreadyResolved(OrchestratorError):
	"""Raised when an approval request is resolved a second time."""
	pass


class NotFound(OrchestratorError):
	"""Raised when a task, approval request or artifact does not exist."""
	pass
