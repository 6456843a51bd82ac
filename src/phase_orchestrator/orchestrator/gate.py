"""
Approval Gate - Human checkpoints that the state machine cannot bypass.

A gate is plain state: opening one records a pending ApprovalRequest and
returns immediately. The request is resolved later, exactly once, by an
explicit decision from the user.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from ..errors import AlreadyResolved, NotFound
from ..tasks.models import ApprovalOutcome, ApprovalRequest, GateDecision, GateKind

logger = logging.getLogger(__name__)

_OUTCOMES = {
	GateDecision.APPROVE: ApprovalOutcome.APPROVED,
	GateDecision.REVISE: ApprovalOutcome.REVISE,
	GateDecision.REJECT: ApprovalOutcome.REJECTED,
}


class ApprovalGate:
	"""Registry of approval requests keyed by id and by gated phase."""

	def __init__(self):
		self._requests: dict[str, ApprovalRequest] = {}
		self._open_by_phase: dict[str, str] = {}  # phase_id -> request id

	def open(self, phase_id: str, summary: str, kind: GateKind = GateKind.PLAN) -> ApprovalRequest:
		"""
		Open a gate for a phase.

		Idempotent: if the phase already has an open request, that request
		is returned unchanged.
		"""
		existing_id = self._open_by_phase.get(phase_id)
		if existing_id is not None:
			return self._requests[existing_id]

		request = ApprovalRequest(
			id=str(uuid.uuid4())[:12],
			phase_id=phase_id,
			kind=kind,
			summary=summary,
		)
		self._requests[request.id] = request
		self._open_by_phase[phase_id] = request.id
		logger.info(f"Opened {kind.value} gate {request.id} for {phase_id}")
		return request

	def resolve(
		self,
		request_id: str,
		decision: GateDecision,
		notes: Optional[str] = None,
	) -> ApprovalRequest:
		"""
		Resolve an approval request.

		Raises:
			NotFound: If the request id is unknown
			AlreadyResolved: If the request was resolved before
		"""
		request = self._requests.get(request_id)
		if request is None:
			raise NotFound(f"Approval request not found: {request_id}")
		if not request.is_pending:
			raise AlreadyResolved(
				f"Approval request {request_id} already resolved as {request.outcome.value}"
			)

		request.outcome = _OUTCOMES[GateDecision(decision)]
		request.notes = notes
		request.resolved_at = datetime.now().isoformat()
		self._open_by_phase.pop(request.phase_id, None)
		logger.info(f"Resolved gate {request_id} for {request.phase_id}: {request.outcome.value}")
		return request

	def get(self, request_id: str) -> ApprovalRequest:
		request = self._requests.get(request_id)
		if request is None:
			raise NotFound(f"Approval request not found: {request_id}")
		return request

	def pending_for(self, phase_id: str) -> Optional[ApprovalRequest]:
		"""The open request for a phase, if any."""
		request_id = self._open_by_phase.get(phase_id)
		return self._requests[request_id] if request_id else None

	def restore(self, request: ApprovalRequest) -> ApprovalRequest:
		"""
		Re-register a persisted request, e.g. after a restart.

		The stored instance becomes the tracked one so resolving it updates
		the owning phase in place.
		"""
		self._requests[request.id] = request
		if request.is_pending:
			self._open_by_phase[request.phase_id] = request.id
		return request
