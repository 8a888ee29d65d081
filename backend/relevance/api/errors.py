"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relevance.domain.search.exceptions import SearchError
from relevance.obs.logging import current_request_id


def _request_id(request: Request) -> str:
	return getattr(request.state, "request_id", None) or current_request_id()


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": _request_id(request)}
		return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": _request_id(request)}
		return JSONResponse(status_code=422, content=jsonable_encoder(payload))

	@app.exception_handler(SearchError)
	async def search_exc_handler(request: Request, exc: SearchError):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": _request_id(request), "retryable": exc.retryable}
		headers = {"Retry-After": "1"} if exc.retryable else None
		return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)
