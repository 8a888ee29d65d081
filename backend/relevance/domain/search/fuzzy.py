"""Bounded fuzzy similarity between a candidate string and a query."""

from __future__ import annotations

from typing import Optional

MAX_SCORE = 100.0
# A candidate containing every query character in order lands at or above this.
MATCH_THRESHOLD = 40.0

_SUBSTRING_BASE = 70.0
_SUBSTRING_SPAN = 25.0
_PREFIX_BONUS = 4.0
_SUBSEQUENCE_SPAN = 30.0
_PARTIAL_SPAN = 35.0


def normalize(value: Optional[str]) -> str:
	if not value:
		return ""
	return value.strip().lower()


def _ordered_overlap(query: str, candidate: str) -> int:
	"""Length of the longest common subsequence of `query` and `candidate`."""

	previous = [0] * (len(candidate) + 1)
	for q_char in query:
		current = [0] * (len(candidate) + 1)
		for idx, c_char in enumerate(candidate, start=1):
			if q_char == c_char:
				current[idx] = previous[idx - 1] + 1
			else:
				current[idx] = max(previous[idx], current[idx - 1])
		previous = current
	return previous[-1]


def fuzzy_score(candidate: Optional[str], query: Optional[str]) -> float:
	"""Score `candidate` against `query` in [0, 100].

	Bands, best first:
	- exact (case-insensitive) equality: 100
	- substring containment: 70..99, higher when the query covers more of the
	  candidate, with a small bonus when the candidate starts with the query
	- every query character present in order: 40..70 by coverage
	- partial in-order overlap: below 35, growing with the overlap

	An empty query carries no signal and scores 0, as does an empty candidate.
	"""

	if not isinstance(candidate, str) or not isinstance(query, str):
		return 0.0
	c = normalize(candidate)
	q = normalize(query)
	if not c or not q:
		return 0.0
	if c == q:
		return MAX_SCORE
	coverage = min(len(q) / len(c), 1.0)
	if q in c:
		score = _SUBSTRING_BASE + _SUBSTRING_SPAN * coverage
		if c.startswith(q):
			score += _PREFIX_BONUS
		return min(score, MAX_SCORE - 1.0)
	overlap = _ordered_overlap(q, c)
	if overlap >= len(q):
		return MATCH_THRESHOLD + _SUBSEQUENCE_SPAN * coverage
	fraction = overlap / len(q)
	return _PARTIAL_SPAN * fraction * fraction


def fuzzy_match(candidate: Optional[str], query: Optional[str]) -> bool:
	"""True when every query character appears in the candidate, in order."""

	return fuzzy_score(candidate, query) >= MATCH_THRESHOLD
