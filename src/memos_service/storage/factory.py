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
Record store factory for the Memos service.

Creates and initializes the Qdrant memo store.
"""

import logging

from ..config import QdrantSettings
from .base import MemoStore
from .qdrant_store import QdrantMemoStore

logger = logging.getLogger(__name__)


async def create_store_instance(config: QdrantSettings | None = None) -> MemoStore:
    """
    Create and initialize the Qdrant memo store.

    Returns:
        Initialized QdrantMemoStore instance
    """
    if config is None:
        from ..config import settings

        config = settings.qdrant

    logger.info(f"Creating Qdrant memo store at {config.location}...")
    store = QdrantMemoStore(
        collection_name=config.collection_name,
        url=config.url,
        storage_path=config.storage_path,
    )
    await store.initialize()
    logger.info("QdrantMemoStore initialized successfully")
    return store
