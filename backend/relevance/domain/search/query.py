"""Parse free-text search input into terms, phrases and inline filters.

Supported operators::

	"exact phrase"      must appear verbatim (title, description or a tag)
	-term               exclude results mentioning the term
	#tag / tag:name     restrict to items carrying the tag
	user:name / by:name restrict to a creator
	rating:>4 rating:<2 rating:3-5
	after:2024-01-01 before:2024-12-31
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

_TOKEN_RE = re.compile(r'(-?)"([^"]*)"|(\S+)')
_RATING_RE = re.compile(r"^(?P<op>[<>]=?)?(?P<low>\d+(?:\.\d+)?)(?:-(?P<high>\d+(?:\.\d+)?))?$")


@dataclass(slots=True)
class QueryFilters:
	user: Optional[str] = None
	min_rating: Optional[float] = None
	max_rating: Optional[float] = None
	date_after: Optional[date] = None
	date_before: Optional[date] = None


@dataclass(slots=True)
class ParsedQuery:
	terms: list[str] = field(default_factory=list)
	exact_phrases: list[str] = field(default_factory=list)
	excluded_terms: list[str] = field(default_factory=list)
	tags: list[str] = field(default_factory=list)
	filters: QueryFilters = field(default_factory=QueryFilters)

	@property
	def search_text(self) -> str:
		"""Text handed to the scorers: plain terms followed by phrases."""
		return " ".join(self.terms + self.exact_phrases).lower()

	def is_empty(self) -> bool:
		return not (self.terms or self.exact_phrases or self.tags)


def _parse_date(value: str) -> Optional[date]:
	try:
		return date.fromisoformat(value)
	except ValueError:
		return None


def _apply_rating(value: str, filters: QueryFilters) -> bool:
	match = _RATING_RE.match(value)
	if not match:
		return False
	low = float(match.group("low"))
	high = match.group("high")
	op = match.group("op")
	if high is not None:
		filters.min_rating, filters.max_rating = low, float(high)
	elif op and op.startswith(">"):
		filters.min_rating = low
	elif op and op.startswith("<"):
		filters.max_rating = low
	else:
		filters.min_rating = filters.max_rating = low
	return True


def _apply_operator(token: str, parsed: ParsedQuery) -> bool:
	if token.startswith("#") and len(token) > 1:
		parsed.tags.append(token[1:])
		return True
	key, sep, value = token.partition(":")
	if not sep or not value:
		return False
	key = key.lower()
	if key == "tag":
		parsed.tags.append(value)
		return True
	if key in ("user", "by"):
		parsed.filters.user = value
		return True
	if key == "rating":
		return _apply_rating(value, parsed.filters)
	if key in ("after", "before"):
		when = _parse_date(value)
		if when is None:
			return False
		if key == "after":
			parsed.filters.date_after = when
		else:
			parsed.filters.date_before = when
		return True
	return False


def parse_search_query(raw: Optional[str]) -> ParsedQuery:
	parsed = ParsedQuery()
	if not raw:
		return parsed
	for match in _TOKEN_RE.finditer(raw):
		negated, phrase, token = match.group(1), match.group(2), match.group(3)
		if phrase is not None:
			phrase = phrase.strip()
			if not phrase:
				continue
			if negated:
				parsed.excluded_terms.append(phrase)
			else:
				parsed.exact_phrases.append(phrase)
			continue
		if token.startswith("-") and len(token) > 1:
			parsed.excluded_terms.append(token[1:])
			continue
		if _apply_operator(token, parsed):
			continue
		parsed.terms.append(token)
	return parsed
