"""Pydantic schemas for the search APIs."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from relevance.settings import settings

ResultType = Literal["item", "user", "tag", "action", "review"]
RESULT_TYPES: tuple[str, ...] = ("item", "user", "tag", "action", "review")

SortOption = Literal[
	"relevance",
	"recent",
	"oldest",
	"name",
	"creation_date",
	"updated_date",
	"rating_desc",
	"rating_asc",
	"top_rated",
	"most_rated",
]


def finite_score(value: Any) -> float:
	"""Coerce a raw score into a finite, non-negative float."""

	try:
		score = float(value)
	except (TypeError, ValueError):
		return 0.0
	if not math.isfinite(score) or score < 0.0:
		return 0.0
	return score


class _ResultBase(BaseModel):
	model_config = ConfigDict(extra="allow")

	id: str
	title: str
	subtitle: Optional[str] = None
	image: Optional[str] = None
	score: float = 0.0

	@field_validator("score", mode="before")
	@classmethod
	def _coerce_score(cls, value: Any) -> float:
		return finite_score(value)


class CreatorRef(BaseModel):
	id: str
	name: str
	avatar: Optional[str] = None


class ItemResult(_ResultBase):
	type: Literal["item"] = "item"
	description: str = ""
	tags: list[str] = Field(default_factory=list)
	category: Optional[str] = None
	status: Optional[str] = None
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	rating: Optional[float] = None
	rating_count: Optional[int] = None
	created_by: Optional[CreatorRef] = None


class UserResult(_ResultBase):
	type: Literal["user"] = "user"
	username: str
	item_count: int = 0


class TagResult(_ResultBase):
	type: Literal["tag"] = "tag"
	count: int = 0


class ActionResult(_ResultBase):
	type: Literal["action"] = "action"
	action: str
	icon: Optional[str] = None


class ReviewResult(_ResultBase):
	type: Literal["review"] = "review"
	item_id: str
	body: str = ""
	rating: Optional[float] = None
	author_id: Optional[str] = None
	created_at: Optional[datetime] = None


SearchResult = Annotated[
	Union[ItemResult, UserResult, TagResult, ActionResult, ReviewResult],
	Field(discriminator="type"),
]


class DateRange(BaseModel):
	start: date
	end: date

	@model_validator(mode="after")
	def _ordered(self) -> "DateRange":
		if self.end < self.start:
			raise ValueError("date range end precedes start")
		return self


class SearchFilters(BaseModel):
	model_config = ConfigDict(frozen=True)

	tags: tuple[str, ...] = ()
	category: Optional[str] = None
	status: Optional[str] = None
	date_range: Optional[DateRange] = None
	creators: tuple[str, ...] = ()
	min_rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
	max_rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
	sort: SortOption = "relevance"

	def is_blank(self) -> bool:
		"""True when the filters narrow nothing beyond the default sort."""
		return not (
			self.tags
			or self.category
			or self.status
			or self.date_range
			or self.creators
			or self.min_rating is not None
			or self.max_rating is not None
		)


class SearchOptions(BaseModel):
	model_config = ConfigDict(frozen=True)

	limit: int = Field(default_factory=lambda: settings.search_default_limit, ge=1)
	page: int = Field(default=1, ge=1)
	include_types: Optional[tuple[ResultType, ...]] = None
	user_id: Optional[str] = None
	weights: Optional[dict[str, float]] = None

	@field_validator("limit", mode="after")
	@classmethod
	def _cap_limit(cls, value: int) -> int:
		return min(value, settings.search_max_limit)

	def includes(self, kind: str) -> bool:
		return not self.include_types or kind in self.include_types


class SearchResponse(BaseModel):
	items: list[ItemResult] = Field(default_factory=list)
	users: list[UserResult] = Field(default_factory=list)
	tags: list[TagResult] = Field(default_factory=list)
	actions: list[ActionResult] = Field(default_factory=list)
	reviews: list[ReviewResult] = Field(default_factory=list)
	total_count: int = 0

	def result_count(self) -> int:
		return len(self.items) + len(self.users) + len(self.tags) + len(self.actions) + len(self.reviews)


class TypeaheadResponse(BaseModel):
	items: list[ItemResult] = Field(default_factory=list)
	users: list[UserResult] = Field(default_factory=list)
	tags: list[TagResult] = Field(default_factory=list)
	actions: list[ActionResult] = Field(default_factory=list)


class SuggestionsResponse(BaseModel):
	suggestions: list[str] = Field(default_factory=list)
	recent_searches: list[str] = Field(default_factory=list)
	trending_searches: list[str] = Field(default_factory=list)
	popular_tags: list[str] = Field(default_factory=list)


class ClickEvent(BaseModel):
	query: str = Field(..., min_length=1, max_length=200)
	result_id: str = Field(..., min_length=1)
	result_type: ResultType
	position: int = Field(default=0, ge=0)


class TrendingTermOut(BaseModel):
	term: str
	count: int
	last_updated: float
	category: Optional[str] = None


class HistoryResponse(BaseModel):
	queries: list[str]


class RerankRequest(BaseModel):
	query: str = Field(..., max_length=200)
	results: list[dict[str, Any]] = Field(default_factory=list, max_length=500)
	weights: Optional[dict[str, float]] = None


class RerankResponse(BaseModel):
	results: list[dict[str, Any]]


class SearchConfig(BaseModel):
	"""Client-facing knobs for debounced, cached search."""

	debounce_ms: int = Field(default=200, ge=0)
	min_query_length: int = Field(default=2, ge=0)
	instant_search: bool = True
	ttl: float = Field(default=300.0, gt=0, description="Cache time-to-live in seconds")

	@classmethod
	def from_settings(cls) -> "SearchConfig":
		return cls(
			debounce_ms=settings.search_debounce_ms,
			min_query_length=settings.search_min_query_length,
			instant_search=settings.search_instant,
			ttl=settings.search_cache_ttl_seconds,
		)
