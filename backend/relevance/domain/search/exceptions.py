"""Custom exceptions for search operations."""

from __future__ import annotations


class SearchError(Exception):
	"""Base class for search errors surfaced to callers."""

	retryable = False

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class QueryValidationError(SearchError):
	"""Raised when search input cannot be interpreted."""

	def __init__(self, detail: str, *, status_code: int = 422) -> None:
		super().__init__(detail, status_code=status_code)


class SearchBackendError(SearchError):
	"""Raised when the candidate source fails to return a batch."""

	retryable = True

	def __init__(self, detail: str = "search_backend_unavailable", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class SearchTimeoutError(SearchError):
	"""Raised when a computation exceeds its time budget."""

	retryable = True

	def __init__(self, detail: str = "search_timeout", *, status_code: int = 504) -> None:
		super().__init__(detail, status_code=status_code)
