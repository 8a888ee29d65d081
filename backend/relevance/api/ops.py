"""Operations endpoints: probes, metrics and search cache controls."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from relevance.api.search import get_service
from relevance.domain.search.service import SearchService
from relevance.obs import health
from relevance.settings import settings

router = APIRouter(tags=["ops"])


class InvalidateRequest(BaseModel):
	pattern: Optional[str] = Field(default=None, max_length=200)


class PreloadRequest(BaseModel):
	queries: list[str] = Field(default_factory=list, max_length=100)


def _bearer_or_header(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	expected = settings.obs_admin_token
	if not expected:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	if _bearer_or_header(x_admin_token, authorization) != expected:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(x_admin_token=x_admin_token, authorization=authorization)


@router.get("/health/live")
async def health_live() -> dict[str, Any]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/ops/search/cache", dependencies=[Depends(require_admin)])
async def cache_stats(service: SearchService = Depends(get_service)) -> dict[str, Any]:
	return service.cache.stats()


@router.post("/ops/search/cache/invalidate", dependencies=[Depends(require_admin)])
async def cache_invalidate(
	payload: InvalidateRequest,
	service: SearchService = Depends(get_service),
) -> dict[str, int]:
	return {"removed": service.invalidate(payload.pattern)}


@router.post("/ops/search/cache/preload", dependencies=[Depends(require_admin)])
async def cache_preload(
	payload: PreloadRequest,
	service: SearchService = Depends(get_service),
) -> dict[str, int]:
	return {"fresh": await service.preload(payload.queries)}


@router.get("/ops/search/events", dependencies=[Depends(require_admin)])
async def recent_events(
	count: int = Query(default=50, ge=1, le=500),
	service: SearchService = Depends(get_service),
) -> list[dict[str, str]]:
	return await service.analytics.recent_events(count)
