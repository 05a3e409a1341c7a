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
FastAPI dependencies for the HTTP interface.
"""

import logging

from fastapi import Depends, Header, HTTPException

from ..services.memo_service import MemoService
from ..services.search_service import SearchService
from ..shared_services import ServiceManager

logger = logging.getLogger(__name__)

# Global service manager, set by the application lifespan
_manager: ServiceManager | None = None


def set_service_manager(manager: ServiceManager | None) -> None:
    global _manager
    _manager = manager


def get_service_manager() -> ServiceManager:
    """Get the initialized service manager."""
    if _manager is None or not _manager.is_initialized():
        raise HTTPException(status_code=503, detail="Services not initialized")
    return _manager


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Owner id set by the upstream auth layer."""
    if x_owner_id is None or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def get_memo_service(manager: ServiceManager = Depends(get_service_manager)) -> MemoService:
    return manager.memo_service


def get_search_service(manager: ServiceManager = Depends(get_service_manager)) -> SearchService:
    return manager.search_service
