"""Input gating for search requests."""

from __future__ import annotations

from typing import Optional

from relevance.domain.search import exceptions, schemas
from relevance.domain.search.fuzzy import normalize
from relevance.settings import settings

MAX_QUERY_LEN = 200


def normalize_query(value: Optional[str]) -> str:
	"""Trim, lower-case and collapse inner whitespace."""

	return " ".join(normalize(value).split())


def ensure_query_allowed(query: str) -> str:
	if len(query) > MAX_QUERY_LEN:
		raise exceptions.QueryValidationError("query_too_long")
	return query


def should_search(
	normalized: str,
	filters: Optional[schemas.SearchFilters],
	*,
	min_length: Optional[int] = None,
) -> bool:
	"""Short queries without narrowing filters are "no search", not an error."""

	threshold = settings.search_min_query_length if min_length is None else min_length
	if len(normalized) >= threshold and normalized:
		return True
	return filters is not None and not filters.is_blank()
