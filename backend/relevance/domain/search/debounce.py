"""Debounced search sessions for keystroke-driven input."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from relevance.obs import metrics as obs_metrics
from relevance.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _Pending:
	generation: int
	text: str
	task: asyncio.Task
	fired: bool = False


def _consume_exception(task: asyncio.Task) -> None:
	if not task.cancelled():
		task.exception()


class SearchSession(Generic[T]):
	"""One input box worth of search state.

	Every `update` bumps a generation counter. A timer that has not fired yet
	is cancelled and restarted; a computation that already fired keeps running
	but its result is dropped once a newer generation exists, so only the
	latest input can become `result`.
	"""

	def __init__(
		self,
		runner: Callable[[str], Awaitable[T]],
		*,
		debounce_ms: Optional[int] = None,
		instant_search: Optional[bool] = None,
	) -> None:
		self._runner = runner
		self.debounce_ms = settings.search_debounce_ms if debounce_ms is None else max(0, int(debounce_ms))
		self.instant_search = settings.search_instant if instant_search is None else instant_search
		self._generation = 0
		self._pending: Optional[_Pending] = None
		self._tasks: set[asyncio.Task] = set()
		self._text = ""
		self._result: Optional[T] = None
		self._result_query: Optional[str] = None
		self._closed = False

	@property
	def generation(self) -> int:
		return self._generation

	@property
	def text(self) -> str:
		"""Latest input, whether or not it has been searched yet."""
		return self._text

	@property
	def query(self) -> Optional[str]:
		"""Input that produced `result`."""
		return self._result_query

	@property
	def result(self) -> Optional[T]:
		return self._result

	def update(self, text: str) -> None:
		"""Register new input; with instant search on, (re)start the timer."""

		self._ensure_open()
		self._text = text
		self._generation += 1
		self._cancel_unfired()
		if self.instant_search:
			self._schedule(text, self.debounce_ms / 1000.0)
		else:
			self._pending = None

	async def commit(self, text: Optional[str] = None) -> Optional[T]:
		"""Search immediately, skipping the debounce delay."""

		self._ensure_open()
		if text is not None:
			self._text = text
		self._generation += 1
		self._cancel_unfired()
		self._schedule(self._text, 0.0)
		return await self.wait()

	async def wait(self) -> Optional[T]:
		"""Wait for the result belonging to the latest input."""

		while True:
			pending = self._pending
			if pending is None:
				return self._result
			await asyncio.wait({pending.task})
			if pending is not self._pending:
				continue
			if pending.task.cancelled():
				return self._result
			return pending.task.result()

	def cancel(self) -> None:
		"""Drop the pending timer without touching the current result."""

		self._generation += 1
		self._cancel_unfired()
		self._pending = None

	async def close(self) -> None:
		self._closed = True
		self._generation += 1
		self._pending = None
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._tasks.clear()

	def _ensure_open(self) -> None:
		if self._closed:
			raise RuntimeError("search session closed")

	def _cancel_unfired(self) -> None:
		pending = self._pending
		if pending is not None and not pending.fired and not pending.task.done():
			pending.task.cancel()

	def _schedule(self, text: str, delay: float) -> None:
		generation = self._generation
		task = asyncio.create_task(self._fire(generation, text, delay), name=f"search-debounce:{generation}")
		task.add_done_callback(_consume_exception)
		task.add_done_callback(self._tasks.discard)
		self._tasks.add(task)
		self._pending = _Pending(generation=generation, text=text, task=task)

	async def _fire(self, generation: int, text: str, delay: float) -> Optional[T]:
		if delay > 0:
			await asyncio.sleep(delay)
		pending = self._pending
		if pending is not None and pending.generation == generation:
			pending.fired = True
		result = await self._runner(text)
		if generation != self._generation:
			obs_metrics.inc_debounce_discard()
			logger.debug("search.session.discarded", extra={"generation": generation, "current": self._generation})
			return None
		self._result = result
		self._result_query = text
		return result

	def __repr__(self) -> str:  # pragma: no cover - debugging aid
		return f"SearchSession(generation={self._generation}, text={self._text!r})"
