"""Domain models backing search ranking."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Mapping, Optional, Union

Timestamp = Union[datetime, int, float, str]


@dataclass(frozen=True, slots=True)
class ScoringWeights:
	"""Named weights applied by the entity scorers.

	Instances are immutable; use `merged` to derive an override.
	"""

	exact_match: float = 100.0
	fuzzy_match: float = 50.0
	title: float = 30.0
	description: float = 20.0
	tag: float = 25.0
	username: float = 40.0
	popularity: float = 15.0
	recency: float = 10.0

	def merged(self, overrides: Optional[Mapping[str, float]] = None) -> "ScoringWeights":
		if not overrides:
			return self
		known = {f.name for f in fields(self)}
		unknown = sorted(set(overrides) - known)
		if unknown:
			raise ValueError(f"unknown scoring weights: {', '.join(unknown)}")
		return replace(self, **{name: float(value) for name, value in overrides.items()})


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(slots=True)
class ItemCandidate:
	"""Content item as materialised by the storage collaborator."""

	item_id: str
	title: str
	description: str = ""
	tags: list[str] = field(default_factory=list)
	category: Optional[str] = None
	status: Optional[str] = None
	created_by_id: Optional[str] = None
	created_by_name: Optional[str] = None
	created_at: Optional[Timestamp] = None
	updated_at: Optional[Timestamp] = None
	rating: Optional[float] = None
	rating_count: Optional[int] = None
	image: Optional[str] = None


@dataclass(slots=True)
class UserCandidate:
	"""User profile candidate."""

	user_id: str
	username: Optional[str] = None
	full_name: Optional[str] = None
	bio: Optional[str] = None
	item_count: Optional[int] = None
	image: Optional[str] = None


@dataclass(slots=True)
class TagCandidate:
	"""Tag with its usage count across items."""

	name: str
	count: int = 0


@dataclass(slots=True)
class ReviewCandidate:
	"""Review left on an item."""

	review_id: str
	item_id: str
	item_title: str = ""
	body: str = ""
	rating: Optional[float] = None
	author_id: Optional[str] = None
	author_name: Optional[str] = None
	created_at: Optional[Timestamp] = None


@dataclass(slots=True)
class CandidateBatch:
	"""Coarsely filtered candidates returned by a single storage fetch."""

	items: list[ItemCandidate] = field(default_factory=list)
	users: list[UserCandidate] = field(default_factory=list)
	tags: list[TagCandidate] = field(default_factory=list)
	reviews: list[ReviewCandidate] = field(default_factory=list)


@dataclass(slots=True)
class SearchHistoryRecord:
	record_id: str
	user_id: str
	query: str
	timestamp: float
	result_count: int
	clicked_results: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TrendingTerm:
	term: str
	count: int
	last_updated: float
	category: Optional[str] = None
