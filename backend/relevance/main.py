"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from relevance.api import ops, search
from relevance.api.errors import install_error_handlers
from relevance.obs import init as obs_init
from relevance.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info("relevance.startup env=%s", settings.environment)
	try:
		yield
	finally:
		await search.get_service().drain()
		logger.info("relevance.shutdown")


app = FastAPI(title="Search Relevance Engine", lifespan=lifespan)

install_error_handlers(app)
obs_init(app)

app.include_router(search.router, tags=["search"])
app.include_router(ops.router, tags=["ops"])
