"""
Subagent Dispatcher - Invokes registered capabilities.

Responsibilities:
- Reject unknown capabilities and mutating calls outside of implementation
- Apply a timeout to every call
- Retry read-only capabilities with exponential backoff
- Fan out to several capabilities with a concurrency ceiling
- Attach a DispatchRecord to the phase that issued each call
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

from ..errors import (
	CapabilityNotPermittedInState,
	DispatchError,
	DispatchTimeout,
	UnknownCapability,
)
from ..tasks.models import (
	CapabilityRequest,
	CapabilityResult,
	DispatchRecord,
	FailureKind,
	Phase,
	PhaseStatus,
)
from .batch import BatchItem, BatchProcessor
from .capabilities import Capability, CapabilityRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10


class Dispatcher:
	"""
	Dispatches capability requests and records their outcomes.

	Failures are returned as typed results rather than raised, so one
	failing capability never disturbs the caller's other work.
	"""

	def __init__(
		self,
		registry: CapabilityRegistry,
		default_timeout: float = 600.0,
		read_only_retries: int = 2,
		retry_backoff_seconds: float = 0.5,
		max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
	):
		"""
		Initialize the dispatcher.

		Args:
			registry: Capability registry with handlers
			default_timeout: Seconds allowed per call when none is given
			read_only_retries: Automatic retries for read-only capabilities
			retry_backoff_seconds: Base delay between retries (doubles each time)
			max_concurrency: Default fan-out ceiling for invoke_parallel
		"""
		self.registry = registry
		self.default_timeout = default_timeout
		self.read_only_retries = read_only_retries
		self.retry_backoff_seconds = retry_backoff_seconds
		self.max_concurrency = max_concurrency

	def _check_permitted(self, capability: Capability, phase: Optional[Phase]) -> None:
		if capability.mutating and phase is not None and phase.status != PhaseStatus.IMPLEMENTING:
			raise CapabilityNotPermittedInState(
				f"Capability '{capability.name}' mutates the workspace and cannot run "
				f"while phase {phase.number} is {phase.status.value}"
			)

	async def _call_once(self, capability: Capability, request: CapabilityRequest, timeout: float) -> CapabilityResult:
		handler = self.registry.handler_for(capability.name)
		try:
			raw = await asyncio.wait_for(handler(request), timeout=timeout)
		except asyncio.TimeoutError as exc:
			raise DispatchTimeout(
				f"Capability '{capability.name}' timed out after {timeout:.1f}s",
				capability=capability.name,
			) from exc
		except DispatchError:
			raise
		except Exception as exc:
			raise DispatchError(
				f"Capability '{capability.name}' raised: {exc}",
				capability=capability.name,
			) from exc

		if isinstance(raw, CapabilityResult):
			return raw
		return CapabilityResult.success(str(raw))

	async def _call(
		self,
		capability: Capability,
		request: CapabilityRequest,
		timeout: float,
	) -> tuple[CapabilityResult, int]:
		"""Call a capability with retries. Returns (result, attempts)."""
		max_attempts = 1 if capability.mutating else 1 + self.read_only_retries
		result: Optional[CapabilityResult] = None

		for attempt in range(max_attempts):
			if attempt > 0:
				delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
				logger.info(
					f"Retrying {capability.name} (attempt {attempt + 1}/{max_attempts}) in {delay:.2f}s"
				)
				await asyncio.sleep(delay)
			try:
				return await self._call_once(capability, request, timeout), attempt + 1
			except DispatchTimeout as e:
				logger.warning(str(e))
				result = CapabilityResult.failure(FailureKind.TIMEOUT, str(e))
			except DispatchError as e:
				logger.warning(str(e))
				result = CapabilityResult.failure(FailureKind.ERROR, str(e))
				if not e.retriable:
					return result, attempt + 1

		return result, max_attempts

	@staticmethod
	def _normalize(capability: str, request: CapabilityRequest | str) -> CapabilityRequest:
		if isinstance(request, str):
			return CapabilityRequest(capability=capability, instructions=request)
		if request.capability != capability:
			return request.model_copy(update={"capability": capability})
		return request

	async def _dispatch(
		self,
		capability_name: str,
		request: CapabilityRequest,
		timeout: float,
		phase: Optional[Phase],
	) -> DispatchRecord:
		capability = self.registry.get(capability_name)
		self._check_permitted(capability, phase)

		started_at = datetime.now().isoformat()
		result, attempts = await self._call(capability, request, timeout)
		record = DispatchRecord(
			id=str(uuid.uuid4())[:12],
			capability=capability.name,
			request=request,
			result=result,
			step=phase.status if phase else None,
			started_at=started_at,
			finished_at=datetime.now().isoformat(),
			attempts=attempts,
		)
		logger.info(
			f"Dispatched {capability.name}: {record.outcome.value} "
			f"after {attempts} attempt(s)"
		)
		return record

	async def invoke(
		self,
		capability: str,
		request: CapabilityRequest | str,
		timeout: Optional[float] = None,
		phase: Optional[Phase] = None,
		sink: Optional[list[DispatchRecord]] = None,
	) -> CapabilityResult:
		"""
		Invoke a single capability.

		Args:
			capability: Registered capability name
			request: Request (or bare instructions)
			timeout: Seconds allowed per attempt
			phase: Enclosing phase; receives the DispatchRecord
			sink: List receiving the DispatchRecord when there is no phase

		Returns:
			CapabilityResult (success, or a typed failure such as timeout)

		Raises:
			UnknownCapability: If the capability is not registered
			CapabilityNotPermittedInState: If a mutating capability is
				invoked while the phase is not implementing
		"""
		request = self._normalize(capability, request)
		if timeout is None:
			timeout = self.default_timeout
		record = await self._dispatch(capability, request, timeout, phase)
		if phase is not None:
			sink = phase.dispatches
		if sink is not None:
			sink.append(record)
		return record.result

	async def invoke_parallel(
		self,
		requests: list[tuple[str, CapabilityRequest | str]],
		max_concurrency: Optional[int] = None,
		timeout: Optional[float] = None,
		phase: Optional[Phase] = None,
	) -> list[CapabilityResult]:
		"""
		Invoke several capabilities concurrently and wait for all of them.

		Results are returned in input order. A failing slot, including a
		slot naming an unknown or forbidden capability, is reported as a
		failure result and never cancels its siblings.
		"""
		if timeout is None:
			timeout = self.default_timeout
		processor: BatchProcessor = BatchProcessor(max_concurrency or self.max_concurrency)
		items = [
			BatchItem(id=f"{i}:{name}", data=(name, self._normalize(name, req)))
			for i, (name, req) in enumerate(requests)
		]

		async def handle(item: BatchItem) -> DispatchRecord:
			name, req = item.data
			return await self._dispatch(name, req, timeout, phase)

		summary = await processor.execute(items, handle)

		results: list[CapabilityResult] = []
		records: list[tuple[str, int, DispatchRecord]] = []
		for slot in summary.results:
			if slot.success:
				results.append(slot.result.result)
				records.append((slot.result.started_at, slot.index, slot.result))
				continue

			error = slot.error
			if isinstance(error, UnknownCapability):
				kind = FailureKind.UNKNOWN_CAPABILITY
			elif isinstance(error, CapabilityNotPermittedInState):
				kind = FailureKind.NOT_PERMITTED
			else:
				kind = FailureKind.ERROR
			results.append(CapabilityResult.failure(kind, str(error)))

		if phase is not None:
			for _, _, record in sorted(records, key=lambda r: (r[0], r[1])):
				phase.dispatches.append(record)

		logger.info(
			f"Batch of {summary.total}: {summary.succeeded} dispatched, "
			f"{sum(1 for r in results if not r.ok)} failed"
		)
		return results
