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
Memo CRUD endpoints for the HTTP interface.

Service errors are translated to status codes by the application's exception
handlers; routes only shape responses.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from ...config import settings
from ...models.memo import MemoCreate, MemoUpdate
from ...services.memo_service import MemoService
from ..dependencies import get_memo_service, get_owner_id

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/memos", status_code=201, tags=["memos"])
async def create_memo(
    request: MemoCreate,
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, Any]:
    """
    Store a new memo.

    The embedding is generated from summary and content. If the provider is
    unavailable the memo is stored anyway and embedded later.
    """
    record = await memo_service.create_memo(owner_id, request)
    return record.to_response()


@router.get("/memos", tags=["memos"])
async def list_memos(
    session_id: str | None = Query(None, description="Only memos from this session"),
    limit: int = Query(50, ge=1, le=settings.search.max_limit),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, Any]:
    """List memos, most recently updated first."""
    records = await memo_service.list_memos(owner_id, session_id=session_id, limit=limit, offset=offset)
    return {
        "memos": [r.to_response() for r in records],
        "count": len(records),
        "limit": limit,
        "offset": offset,
    }


@router.post("/memos/regenerate-embeddings", tags=["memos"])
async def regenerate_embeddings(
    batch_size: int = Query(settings.backfill.batch_size, ge=1, le=500),
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, int]:
    """Embed one batch of memos that are missing an embedding."""
    logger.info(f"Embedding regeneration requested by owner {owner_id} (batch_size={batch_size})")
    return await memo_service.regenerate_embeddings(batch_size=batch_size)


@router.get("/memos/{memo_id}", tags=["memos"])
async def get_memo(
    memo_id: int,
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, Any]:
    """Fetch one memo. Counts as an access."""
    record = await memo_service.get_memo(owner_id, memo_id)
    return record.to_response()


@router.patch("/memos/{memo_id}", tags=["memos"])
async def update_memo(
    memo_id: int,
    request: MemoUpdate,
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, Any]:
    """Partially update a memo. Only fields present in the body change."""
    record = await memo_service.update_memo(owner_id, memo_id, request)
    return record.to_response()


@router.delete("/memos/{memo_id}", tags=["memos"])
async def delete_memo(
    memo_id: int,
    owner_id: str = Depends(get_owner_id),
    memo_service: MemoService = Depends(get_memo_service),
) -> dict[str, Any]:
    await memo_service.delete_memo(owner_id, memo_id)
    return {"success": True, "id": memo_id, "message": "Memo deleted"}
