"""Operational endpoints: pipeline stats and knowledge refresh."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from qala.api.deps import ChatServices, get_services
from qala.api.models import ApiResponse, ServiceStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["stats"])


@router.get("/stats", response_model=ApiResponse[ServiceStats])
async def get_stats(services: ChatServices = Depends(get_services)) -> ApiResponse[ServiceStats]:
    """Throttling, connection pool and knowledge base counters."""
    return ApiResponse[ServiceStats](data=ServiceStats(**services.stats()))


@router.post("/knowledge/refresh", response_model=ApiResponse[dict[str, Any]])
async def refresh_knowledge(
    full: bool = Query(default=False),
    services: ChatServices = Depends(get_services),
) -> ApiResponse[dict[str, Any]]:
    """Rebuild the knowledge indices; ``full=true`` also clears the match cache."""
    services.knowledge.refresh(full=full)
    return ApiResponse[dict[str, Any]](data=services.knowledge.get_sync_stats())
