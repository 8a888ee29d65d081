"""Relevance scoring for search results.

Every scorer returns a finite, non-negative float and never raises: optional
fields that are missing or malformed contribute nothing.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from relevance.domain.search import models
from relevance.domain.search.fuzzy import fuzzy_score, normalize
from relevance.domain.search.schemas import finite_score

logger = logging.getLogger(__name__)

TITLE_REPEAT_BONUS = 10.0
DESCRIPTION_REPEAT_BONUS = 5.0
BIO_FACTOR = 0.5
RATING_SCALE = 5.0
RATING_COUNT_SATURATION = 10.0
ACTIVITY_SATURATION = 20.0
TAG_USAGE_SATURATION = 100.0
RECENCY_HORIZON_DAYS = 365.0

_SECONDS_PER_DAY = 86_400.0
# Epoch values above this are taken to be milliseconds.
_EPOCH_MS_CUTOFF = 1e11


def _weighted(similarity: float, weight: float) -> float:
	return (similarity / 100.0) * weight


def _occurrences(text: Optional[str], normalized_query: str) -> int:
	if not text or not normalized_query:
		return 0
	return len(re.findall(re.escape(normalized_query), text.lower()))


def _repeat_bonus(text: Optional[str], normalized_query: str, per_occurrence: float) -> float:
	extra = _occurrences(text, normalized_query) - 1
	return extra * per_occurrence if extra > 0 else 0.0


def to_epoch_seconds(value: Optional[models.Timestamp]) -> Optional[float]:
	"""Best-effort conversion of a creation timestamp; None when unusable."""

	if value is None or isinstance(value, bool):
		return None
	if isinstance(value, datetime):
		if value.tzinfo is None:
			value = value.replace(tzinfo=timezone.utc)
		return value.timestamp()
	if isinstance(value, (int, float)):
		seconds = float(value)
		return seconds / 1000.0 if abs(seconds) > _EPOCH_MS_CUTOFF else seconds
	if isinstance(value, str):
		text = value.strip()
		if not text:
			return None
		try:
			parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
		except ValueError:
			return None
		return to_epoch_seconds(parsed)
	return None


def recency_factor(created_at: Optional[models.Timestamp], *, now: Optional[float] = None) -> float:
	"""Linear decay from 1 (brand new) to 0 (a year or older)."""

	created = to_epoch_seconds(created_at)
	if created is None:
		return 0.0
	current = time.time() if now is None else now
	age_days = (current - created) / _SECONDS_PER_DAY
	return max(0.0, min(1.0, 1.0 - age_days / RECENCY_HORIZON_DAYS))


def popularity_factor(rating: Optional[float], rating_count: Optional[int]) -> float:
	if not rating or not rating_count or rating <= 0 or rating_count <= 0:
		return 0.0
	return (rating / RATING_SCALE) * min(rating_count / RATING_COUNT_SATURATION, 1.0)


def score_item(
	item: models.ItemCandidate,
	query: str,
	weights: models.ScoringWeights = models.DEFAULT_WEIGHTS,
	*,
	now: Optional[float] = None,
) -> float:
	q = normalize(query)
	score = 0.0
	score += _weighted(fuzzy_score(item.title, q), weights.title)
	score += _weighted(fuzzy_score(item.description, q), weights.description)
	score += _repeat_bonus(item.title, q, TITLE_REPEAT_BONUS)
	score += _repeat_bonus(item.description, q, DESCRIPTION_REPEAT_BONUS)
	if item.tags:
		best_tag = max(fuzzy_score(tag, q) for tag in item.tags)
		score += _weighted(best_tag, weights.tag)
	score += popularity_factor(item.rating, item.rating_count) * weights.popularity
	score += recency_factor(item.created_at, now=now) * weights.recency
	return finite_score(score)


def score_user(
	user: models.UserCandidate,
	query: str,
	weights: models.ScoringWeights = models.DEFAULT_WEIGHTS,
) -> float:
	q = normalize(query)
	score = 0.0
	if user.username:
		score += _weighted(fuzzy_score(user.username, q), weights.username)
		if q and normalize(user.username) == q:
			score += weights.exact_match
	if user.full_name:
		score += _weighted(fuzzy_score(user.full_name, q), weights.title)
	if user.bio:
		score += _weighted(fuzzy_score(user.bio, q), weights.description) * BIO_FACTOR
	if user.item_count and user.item_count > 0:
		score += min(user.item_count / ACTIVITY_SATURATION, 1.0) * weights.popularity
	return finite_score(score)


def score_tag(
	tag: models.TagCandidate,
	query: str,
	weights: models.ScoringWeights = models.DEFAULT_WEIGHTS,
) -> float:
	q = normalize(query)
	score = _weighted(fuzzy_score(tag.name, q), weights.tag)
	if q and normalize(tag.name) == q:
		score += weights.exact_match
	if tag.count and tag.count > 0:
		score += min(tag.count / TAG_USAGE_SATURATION, 1.0) * weights.popularity
	return finite_score(score)


# Cross-type re-ranking -------------------------------------------------------


def _field(result: Any, name: str, default: Any = None) -> Any:
	if isinstance(result, Mapping):
		return result.get(name, default)
	return getattr(result, name, default)


def _with_score(result: Any, score: float) -> Any:
	if isinstance(result, Mapping):
		return {**result, "score": score}
	model_copy = getattr(result, "model_copy", None)
	if callable(model_copy):
		return model_copy(update={"score": score})
	if dataclasses.is_dataclass(result) and not isinstance(result, type):
		if any(f.name == "score" for f in dataclasses.fields(result)):
			return dataclasses.replace(result, score=score)
	return result


def _as_int(value: Any) -> int:
	try:
		return int(value or 0)
	except (TypeError, ValueError):
		return 0


def _as_tags(value: Any) -> list[str]:
	if not isinstance(value, (list, tuple)):
		return []
	return [str(tag) for tag in value if tag]


def _rescore(result: Any, query: str, weights: models.ScoringWeights, now: Optional[float]) -> Optional[float]:
	kind = _field(result, "type")
	if kind == "item":
		candidate = models.ItemCandidate(
			item_id=str(_field(result, "id", "")),
			title=str(_field(result, "title") or ""),
			description=str(_field(result, "description") or ""),
			tags=_as_tags(_field(result, "tags")),
			created_at=_field(result, "created_at"),
			rating=_field(result, "rating"),
			rating_count=_field(result, "rating_count"),
		)
		return score_item(candidate, query, weights, now=now)
	if kind == "user":
		candidate = models.UserCandidate(
			user_id=str(_field(result, "id", "")),
			username=_field(result, "username"),
			full_name=_field(result, "subtitle"),
			item_count=_as_int(_field(result, "item_count")),
		)
		return score_user(candidate, query, weights)
	if kind == "tag":
		candidate = models.TagCandidate(
			name=str(_field(result, "title") or ""),
			count=_as_int(_field(result, "count")),
		)
		return score_tag(candidate, query, weights)
	return None


def rerank(
	results: Iterable[Any],
	query: str,
	weights: models.ScoringWeights = models.DEFAULT_WEIGHTS,
	*,
	now: Optional[float] = None,
) -> list[Any]:
	"""Re-score heterogeneous results and order them by score, highest first.

	Items, users and tags are re-scored from the fields present on each
	result. Actions, reviews and unrecognised kinds keep their current score.
	Equal scores keep their input order.
	"""

	rescored: list[tuple[float, Any]] = []
	for result in results:
		current = finite_score(_field(result, "score", 0.0))
		try:
			fresh = _rescore(result, query, weights, now)
		except Exception:
			logger.warning(
				"search.rerank.adapter_failed",
				extra={"kind": str(_field(result, "type")), "result_id": str(_field(result, "id"))},
				exc_info=True,
			)
			fresh = None
		score = current if fresh is None else fresh
		rescored.append((score, _with_score(result, score)))
	rescored.sort(key=lambda pair: pair[0], reverse=True)
	return [result for _, result in rescored]


def sort_by_score(results: Sequence[Any]) -> list[Any]:
	"""Stable descending sort on the `score` attribute."""

	return sorted(results, key=lambda result: finite_score(_field(result, "score", 0.0)), reverse=True)
