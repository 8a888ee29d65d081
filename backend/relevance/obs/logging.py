"""JSON logging with per-request context for the relevance service."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from relevance.settings import settings

_LOGGER_NAME = "relevance"

# Fields copied from the active request onto every record.
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"request_id": ContextVar("relevance_request_id", default=None),
	"route": ContextVar("relevance_route", default=None),
	"user_id": ContextVar("relevance_user_id", default=None),
}

_REDACTED_KEYS = ("token", "secret", "authorization", "password", "cookie")
# Search text is user input; keep enough to correlate, not the full string.
_QUERY_KEYS = frozenset({"query", "term"})
_QUERY_PREVIEW = 64
_MAX_STRING = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind request fields (request_id, route, user_id); returns reset tokens."""

	tokens: Dict[str, Token] = {}
	for name, value in fields.items():
		var = _CONTEXT.get(name)
		if var is not None and value is not None:
			tokens[name] = var.set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def current_request_id(default: str = "unknown") -> str:
	return _CONTEXT["request_id"].get() or default


def _clip(value: Any, depth: int = 0) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else value[:_MAX_STRING] + "..."
	if depth >= 2:
		return str(value)[:_MAX_STRING]
	if isinstance(value, dict):
		items = list(value.items())
		clipped = {str(key): _field_value(str(key), nested, depth + 1) for key, nested in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			clipped["_truncated"] = len(items) - _MAX_ITEMS
		return clipped
	if isinstance(value, (list, tuple, set)):
		values = [_clip(item, depth + 1) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			values.append(f"+{len(value) - _MAX_ITEMS} more")
		return values
	return value


def _field_value(key: str, value: Any, depth: int = 0) -> Any:
	lowered = key.lower()
	if any(marker in lowered for marker in _REDACTED_KEYS):
		return "[redacted]"
	if lowered in _QUERY_KEYS and isinstance(value, str):
		return value[:_QUERY_PREVIEW]
	return _clip(value, depth)


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[name] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key not in _RECORD_ATTRS and key not in payload:
				payload[key] = _field_value(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info records at `obs_log_sampling_rate_info`; other levels pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = settings.obs_log_sampling_rate_info
		return rate >= 1.0 or random.random() < max(0.0, rate)


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers.clear()
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
