"""REST endpoints for search, suggestions and search analytics."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import ValidationError

from relevance.domain.search import exceptions, schemas
from relevance.domain.search.service import SearchService

router = APIRouter(tags=["search"])

_service = SearchService()


def get_service() -> SearchService:
	return _service


async def current_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> Optional[str]:
	"""Caller identity as forwarded by the upstream auth layer."""

	if x_user_id is None:
		return None
	value = x_user_id.strip()
	return value or None


async def require_user_id(user_id: Optional[str] = Depends(current_user_id)) -> str:
	if not user_id:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user_required")
	return user_id


def _parse_types(type_param: Optional[str]) -> Optional[tuple[str, ...]]:
	if not type_param:
		return None
	seen: list[str] = []
	for raw in type_param.split(","):
		kind = raw.strip().lower()
		if not kind:
			continue
		if kind not in schemas.RESULT_TYPES:
			raise exceptions.QueryValidationError("unknown_type", status_code=400)
		if kind not in seen:
			seen.append(kind)
	return tuple(seen) or None


def _build_filters(
	*,
	tags: list[str],
	category: Optional[str],
	status_filter: Optional[str],
	creators: list[str],
	min_rating: Optional[float],
	max_rating: Optional[float],
	start: Optional[date],
	end: Optional[date],
	sort: str,
) -> schemas.SearchFilters:
	date_range = None
	if start is not None or end is not None:
		date_range = {
			"start": start or date(1970, 1, 1),
			"end": end or datetime.now(timezone.utc).date(),
		}
	try:
		return schemas.SearchFilters(
			tags=tuple(tags),
			category=category,
			status=status_filter,
			creators=tuple(creators),
			min_rating=min_rating,
			max_rating=max_rating,
			date_range=date_range,
			sort=sort,
		)
	except ValidationError as exc:
		raise exceptions.QueryValidationError("invalid_filters") from exc


@router.get("/search", response_model=schemas.SearchResponse)
async def search_endpoint(
	q: str = Query(default="", max_length=500),
	tags: Optional[list[str]] = Query(default=None),
	category: Optional[str] = None,
	status_filter: Optional[str] = Query(default=None, alias="status"),
	creators: Optional[list[str]] = Query(default=None),
	min_rating: Optional[float] = Query(default=None, ge=0.0, le=5.0),
	max_rating: Optional[float] = Query(default=None, ge=0.0, le=5.0),
	start: Optional[date] = None,
	end: Optional[date] = None,
	sort: schemas.SortOption = "relevance",
	limit: Optional[int] = Query(default=None, ge=1),
	page: int = Query(default=1, ge=1),
	types: Optional[str] = Query(default=None, alias="type"),
	user_id: Optional[str] = Depends(current_user_id),
	service: SearchService = Depends(get_service),
) -> schemas.SearchResponse:
	filters = _build_filters(
		tags=tags or [],
		category=category,
		status_filter=status_filter,
		creators=creators or [],
		min_rating=min_rating,
		max_rating=max_rating,
		start=start,
		end=end,
		sort=sort,
	)
	option_args = {"page": page, "include_types": _parse_types(types), "user_id": user_id}
	if limit is not None:
		option_args["limit"] = limit
	options = schemas.SearchOptions(**option_args)
	return await service.search(q, filters, options)


@router.post("/search/rerank", response_model=schemas.RerankResponse)
async def rerank_endpoint(
	payload: schemas.RerankRequest,
	service: SearchService = Depends(get_service),
) -> schemas.RerankResponse:
	return schemas.RerankResponse(results=service.rerank(payload.results, payload.query, payload.weights))


@router.get("/search/suggestions", response_model=schemas.SuggestionsResponse)
async def suggestions_endpoint(
	user_id: Optional[str] = Depends(current_user_id),
	service: SearchService = Depends(get_service),
) -> schemas.SuggestionsResponse:
	return await service.suggestions_response(user_id)


@router.get("/search/typeahead", response_model=schemas.TypeaheadResponse)
async def typeahead_endpoint(
	q: str = Query(default="", max_length=500),
	service: SearchService = Depends(get_service),
) -> schemas.TypeaheadResponse:
	return await service.typeahead(q)


@router.get("/search/history", response_model=schemas.HistoryResponse)
async def history_endpoint(
	limit: Optional[int] = Query(default=None, ge=1, le=100),
	user_id: Optional[str] = Depends(current_user_id),
	service: SearchService = Depends(get_service),
) -> schemas.HistoryResponse:
	if not user_id:
		return schemas.HistoryResponse(queries=[])
	return schemas.HistoryResponse(queries=await service.get_history(user_id, limit))


@router.delete("/search/history")
async def clear_history_endpoint(
	user_id: str = Depends(require_user_id),
	service: SearchService = Depends(get_service),
) -> dict[str, int]:
	removed = await service.clear_history(user_id)
	return {"removed": removed}


@router.post("/search/click", status_code=status.HTTP_202_ACCEPTED)
async def click_endpoint(
	event: schemas.ClickEvent,
	user_id: Optional[str] = Depends(current_user_id),
	service: SearchService = Depends(get_service),
) -> dict[str, str]:
	service.track_click(event, user_id=user_id)
	return {"status": "accepted"}


@router.get("/search/trending", response_model=list[schemas.TrendingTermOut])
async def trending_endpoint(
	limit: int = Query(default=10, ge=1, le=50),
	category: Optional[str] = None,
	service: SearchService = Depends(get_service),
) -> list[schemas.TrendingTermOut]:
	terms = await service.get_trending(limit, category)
	return [
		schemas.TrendingTermOut(term=t.term, count=t.count, last_updated=t.last_updated, category=t.category)
		for t in terms
	]


@router.get("/search/config", response_model=schemas.SearchConfig)
async def config_endpoint(service: SearchService = Depends(get_service)) -> schemas.SearchConfig:
	return service.config
