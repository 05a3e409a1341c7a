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
Health endpoint for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ... import __version__
from ...errors import StoreError
from ...shared_services import ServiceManager
from ..dependencies import get_service_manager

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", tags=["health"])
async def health(manager: ServiceManager = Depends(get_service_manager)) -> Any:
    """Record store and cache status. Returns 503 while the store is unavailable."""
    cache = await manager.search_service.cache_stats()
    backfill = manager.backfill.stats if manager.backfill else None
    try:
        store = await manager.store.get_stats()
    except StoreError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "version": __version__, "error": str(e), "cache": cache},
        )

    return {"status": "healthy", "version": __version__, "store": store, "cache": cache, "backfill": backfill}
