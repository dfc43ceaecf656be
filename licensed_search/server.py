#!/usr/bin/env python3
"""
Licensed Search HTTP API
Same search pipeline as the MCP tool, exposed over FastAPI for HTTP clients.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request

from . import __version__
from .config.settings import settings
from .errors import ConfigurationError, TransportError, UpstreamError
from .mcp_server import LicensedSearchMCPServer
from .schemas import SearchToolArgs

logger = logging.getLogger(__name__)

SERVICE_NAME = "Licensed Search MCP Server"


def create_app(service_factory: Callable[[], LicensedSearchMCPServer] = LicensedSearchMCPServer) -> FastAPI:
    """Build the HTTP app; the search service lives for the app's lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            app.state.search_service = service_factory()
        except ConfigurationError as e:
            logger.error(f"Search service unavailable: {e}")
            app.state.search_service = None
        logger.info("HTTP API Server started")

        yield

        if app.state.search_service is not None:
            await app.state.search_service.cleanup()
        logger.info("HTTP API Server stopped")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Exa web search with Copyright.sh licensing and x402 licensed fetch",
        version=__version__,
        lifespan=lifespan,
    )

    def get_service(request: Request) -> LicensedSearchMCPServer:
        service = getattr(request.app.state, "search_service", None)
        if service is None:
            raise HTTPException(status_code=503, detail="Search service not initialized")
        return service

    async def run_search(args: SearchToolArgs, service: LicensedSearchMCPServer) -> Dict[str, Any]:
        try:
            return await service.orchestrator.search(args)
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except (UpstreamError, TransportError) as e:
            logger.error(f"Search error: {e}")
            raise HTTPException(status_code=502, detail=f"Search failed: {e}")

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {"status": "ok", "service": SERVICE_NAME, "version": __version__}

    @app.get("/health")
    async def health(request: Request):
        """Health check with more details"""
        service = getattr(request.app.state, "search_service", None)
        ledger = settings.config.ledger if service is None else service.config.ledger
        return {
            "status": "healthy" if service is not None else "degraded",
            "service": SERVICE_NAME,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "license_tracking": ledger.enable_tracking,
            "license_cache": ledger.enable_cache,
            "ledger_credential": bool(ledger.api_key),
        }

    @app.post("/search")
    async def search_endpoint(args: SearchToolArgs, service: LicensedSearchMCPServer = Depends(get_service)):
        """Licensed search endpoint"""
        return await run_search(args, service)

    @app.get("/search")
    async def search_get_endpoint(
        query: str,
        num_results: int = 10,
        type: str = "neural",
        include_domains: Optional[List[str]] = Query(None),
        exclude_domains: Optional[List[str]] = Query(None),
        fetch: bool = False,
        stage: str = "infer",
        distribution: str = "private",
        estimated_tokens: int = 1500,
        max_chars: Optional[int] = None,
        service: LicensedSearchMCPServer = Depends(get_service),
    ):
        """Licensed search endpoint (GET method)"""
        try:
            args = SearchToolArgs(
                query=query,
                num_results=num_results,
                type=type,
                include_domains=include_domains,
                exclude_domains=exclude_domains,
                fetch=fetch,
                stage=stage,
                distribution=distribution,
                estimated_tokens=estimated_tokens,
                max_chars=max_chars,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return await run_search(args, service)

    return app


app = create_app()


def run_http_server():
    """Run HTTP server"""
    uvicorn.run(
        "licensed_search.server:app",
        host=settings.config.host,
        port=settings.config.port,
        reload=False,
        log_level=settings.config.log_level.lower(),
    )
