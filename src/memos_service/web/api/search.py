# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Search endpoints for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...models.search import SearchFilters
from ...models.validators import SortBy
from ...services.search_service import SearchService
from ..dependencies import get_owner_id, get_search_service

router = APIRouter()
logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    """Request model for a ranked search."""

    query: str = Field(..., description="Free-text query")
    filters: SearchFilters = Field(default_factory=SearchFilters, description="Hard filters applied before scoring")
    sort_by: SortBy = Field("relevance", description="relevance, importance, recency or popularity")
    limit: int | None = Field(None, description="Maximum number of results")
    debug: bool = Field(False, description="Include relevance score and per-signal breakdown")


@router.post("/search", tags=["search"])
async def search_memos(
    request: SearchRequest,
    owner_id: str = Depends(get_owner_id),
    search_service: SearchService = Depends(get_search_service),
) -> dict[str, Any]:
    """
    Ranked hybrid search over the caller's memos.

    Combines keyword, tag, semantic and importance signals; results below the
    relevance threshold are omitted.
    """
    results = await search_service.search(
        owner_id,
        request.query,
        filters=request.filters,
        sort_by=request.sort_by,
        limit=request.limit,
    )
    return {
        "query": request.query,
        "sort_by": request.sort_by,
        "results": [r.to_response(include_score=request.debug) for r in results],
        "count": len(results),
    }


@router.get("/search/analytics", tags=["search"])
async def search_analytics(
    limit: int = Query(1000, ge=1, le=10000),
    owner_id: str = Depends(get_owner_id),
    search_service: SearchService = Depends(get_search_service),
) -> dict[str, Any]:
    """Aggregated statistics over the caller's recent searches."""
    return search_service.get_search_analytics(limit=limit, owner_id=owner_id)


@router.get("/search/cache/stats", tags=["search"])
async def cache_stats(
    owner_id: str = Depends(get_owner_id),
    search_service: SearchService = Depends(get_search_service),
) -> dict[str, Any]:
    """Cache entries and hit rate for the caller; process-wide figures are on /health."""
    return await search_service.cache_stats(owner_id=owner_id)


@router.delete("/search/cache", tags=["search"])
async def clear_owner_cache(
    owner_id: str = Depends(get_owner_id),
    search_service: SearchService = Depends(get_search_service),
) -> dict[str, Any]:
    """Drop the caller's cached search results."""
    cleared = await search_service.invalidate_owner(owner_id)
    return {"success": True, "cleared": cleared}
