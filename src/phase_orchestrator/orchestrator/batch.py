"""
Bounded fan-out with a fan-in barrier.

Slots run concurrently under a concurrency ceiling. A failing slot never
cancels its siblings, and results come back in input order once every
slot is done.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchItem(Generic[T]):
	"""A single slot in a batch."""
	id: str
	data: T


@dataclass
class BatchResult(Generic[R]):
	"""Outcome of one slot; exactly one of result or error is meaningful."""
	item_id: str
	index: int
	success: bool
	result: Optional[R] = None
	error: Optional[BaseException] = None


@dataclass
class BatchSummary(Generic[R]):
	"""Results of a finished batch, ordered like the input."""
	total: int
	succeeded: int
	failed: int
	results: list[BatchResult[R]] = field(default_factory=list)


class BatchProcessor(Generic[T, R]):
	"""
	Runs a batch of slots through one handler with a semaphore ceiling.

	Exceptions raised by the handler are captured on the slot's result.
	"""

	def __init__(self, max_concurrency: int = 10):
		if max_concurrency < 1:
			raise ValueError("max_concurrency must be at least 1")
		self.max_concurrency = max_concurrency

	async def execute(
		self,
		items: list[BatchItem[T]],
		handler: Callable[[BatchItem[T]], Awaitable[R]],
	) -> BatchSummary[R]:
		"""
		Run every slot and wait for all of them.

		Args:
			items: Slots to process
			handler: Async function applied to each slot

		Returns:
			BatchSummary with one result per slot, in input order
		"""
		semaphore = asyncio.Semaphore(self.max_concurrency)
		slots: list[Optional[BatchResult[R]]] = [None] * len(items)

		async def run_slot(index: int, item: BatchItem[T]) -> None:
			async with semaphore:
				try:
					slots[index] = BatchResult(item_id=item.id, index=index, success=True, result=await handler(item))
				except Exception as e:
					logger.warning(f"Batch slot {item.id} failed: {e}")
					slots[index] = BatchResult(item_id=item.id, index=index, success=False, error=e)

		await asyncio.gather(*(run_slot(i, item) for i, item in enumerate(items)))

		results = [r for r in slots if r is not None]
		succeeded = sum(1 for r in results if r.success)
		return BatchSummary(
			total=len(items),
			succeeded=succeeded,
			failed=len(results) - succeeded,
			results=results,
		)
