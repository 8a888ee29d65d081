"""Candidate sources feeding the search service."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import replace
from typing import Iterable, Optional, Protocol

from relevance.domain.search import models, schemas


class CandidateSource(Protocol):
	"""Storage collaborator: returns coarsely filtered candidates in one batch."""

	async def fetch_candidates(
		self,
		filters: Optional[schemas.SearchFilters],
		include_types: Iterable[str],
	) -> models.CandidateBatch:
		...


class MemoryCandidateStore:
	"""In-process candidate store used by the API by default and in tests."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.items: dict[str, models.ItemCandidate] = {}
		self.users: dict[str, models.UserCandidate] = {}
		self.tags: dict[str, models.TagCandidate] = {}
		self.reviews: dict[str, models.ReviewCandidate] = {}

	async def reset(self) -> None:
		async with self._lock:
			self.items.clear()
			self.users.clear()
			self.tags.clear()
			self.reviews.clear()

	async def seed(
		self,
		*,
		items: Iterable[models.ItemCandidate] | None = None,
		users: Iterable[models.UserCandidate] | None = None,
		tags: Iterable[models.TagCandidate] | None = None,
		reviews: Iterable[models.ReviewCandidate] | None = None,
	) -> None:
		async with self._lock:
			self.items = {item.item_id: item for item in items or []}
			self.users = {user.user_id: user for user in users or []}
			self.tags = {tag.name: tag for tag in tags or []}
			self.reviews = {review.review_id: review for review in reviews or []}

	@staticmethod
	def _coarse_match(item: models.ItemCandidate, filters: Optional[schemas.SearchFilters]) -> bool:
		if filters is None:
			return True
		if filters.category and item.category != filters.category:
			return False
		if filters.status and item.status != filters.status:
			return False
		return True

	def _tag_counts(self) -> list[models.TagCandidate]:
		counts: Counter[str] = Counter()
		for item in self.items.values():
			for tag in item.tags or []:
				if tag:
					counts[tag] += 1
		for name, seeded in self.tags.items():
			counts[name] = max(counts[name], seeded.count)
		ordered = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
		return [models.TagCandidate(name=name, count=count) for name, count in ordered]

	def _authored(self) -> Counter[str]:
		authored: Counter[str] = Counter()
		for item in self.items.values():
			if item.created_by_id:
				authored[item.created_by_id] += 1
		return authored

	async def fetch_candidates(
		self,
		filters: Optional[schemas.SearchFilters],
		include_types: Iterable[str],
	) -> models.CandidateBatch:
		wanted = set(include_types)
		batch = models.CandidateBatch()
		async with self._lock:
			if "item" in wanted:
				batch.items = [replace(item, tags=list(item.tags)) for item in self.items.values() if self._coarse_match(item, filters)]
			if "user" in wanted:
				authored = self._authored()
				batch.users = [
					replace(user, item_count=user.item_count if user.item_count is not None else authored.get(user.user_id, 0))
					for user in self.users.values()
				]
			if "tag" in wanted:
				batch.tags = self._tag_counts()
			if "review" in wanted:
				reviews: list[models.ReviewCandidate] = []
				for review in self.reviews.values():
					item = self.items.get(review.item_id)
					if item is not None and not self._coarse_match(item, filters):
						continue
					title = review.item_title or (item.title if item is not None else "")
					reviews.append(replace(review, item_title=title))
				batch.reviews = reviews
		return batch


_MEMORY = MemoryCandidateStore()


def memory_store() -> MemoryCandidateStore:
	return _MEMORY


async def seed_memory_store(
	*,
	items: Iterable[models.ItemCandidate] | None = None,
	users: Iterable[models.UserCandidate] | None = None,
	tags: Iterable[models.TagCandidate] | None = None,
	reviews: Iterable[models.ReviewCandidate] | None = None,
) -> None:
	await _MEMORY.seed(items=items, users=users, tags=tags, reviews=reviews)


async def reset_memory_state() -> None:
	await _MEMORY.reset()
