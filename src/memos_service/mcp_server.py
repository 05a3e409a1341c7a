#!/usr/bin/env python3
"""FastMCP server for the Memos service.

Native MCP protocol implementation using FastMCP with Pydantic-validated
tool inputs. Each tool handler constructs an input model for validation and
delegates to the shared memo and search services.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import settings
from .errors import InputValidationError, MemoNotFoundError, StoreError
from .models.mcp_inputs import FindMemoriesParams, MemoIdParams, MemorizeParams, tool_error
from .models.memo import MemoCreate, MemoRecord, ScoredMemo
from .models.search import format_validation_error
from .services.memo_service import MemoService
from .services.search_service import SearchService
from .shared_services import get_service_manager

logger = logging.getLogger(__name__)

SORT_LABELS = {
    "relevance": "relevance",
    "importance": "importance",
    "recency": "most recent",
    "popularity": "popularity",
}


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    memo_service: MemoService
    search_service: SearchService


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Reuse the shared services if the HTTP side already started them."""
    manager = get_service_manager()
    owns_services = not manager.is_initialized()
    if owns_services:
        logger.info("No shared services found, initializing (standalone mode)")
        await manager.initialize()
    else:
        logger.debug("Using pre-initialized shared services")

    try:
        yield MCPServerContext(memo_service=manager.memo_service, search_service=manager.search_service)
    finally:
        if owns_services:
            logger.info("Shutting down Memos MCP components...")
            await manager.close()


mcp = FastMCP("Memos Service", lifespan=mcp_server_lifespan)


def _owner_id() -> str | None:
    return settings.server.owner_id


# =============================================================================
# FORMATTING
# =============================================================================


def format_memo_block(index: int, memo: MemoRecord) -> str:
    """One numbered, human-readable result block."""
    lines = [
        f"{index}. ID: {memo.id} | Author: {memo.author_role} | Importance: {memo.importance} | "
        f"Access: {memo.access_count}",
        f"   Content: {memo.content}",
    ]
    if memo.summary:
        lines.append(f"   Summary: {memo.summary}")
    lines.append(f"   Tags: {', '.join(memo.tags) if memo.tags else 'None'}")
    lines.append(f"   Created: {memo.created_at.isoformat()} | Updated: {memo.updated_at.isoformat()}")
    return "\n".join(lines) + "\n"


def format_search_results(query: str, results: list[ScoredMemo], sort_by: str) -> str:
    blocks = "\n".join(format_memo_block(i, r.memo) for i, r in enumerate(results, start=1))
    label = SORT_LABELS.get(sort_by, sort_by)
    return f'Found {len(results)} memo(s) for query: "{query}" (sorted by {label})\n\n{blocks}'


def format_no_results(query: str, filter_parts: list[str]) -> str:
    filter_text = f" with filters: {', '.join(filter_parts)}" if filter_parts else ""
    return f'No memos found for query: "{query}"{filter_text}'


# =============================================================================
# TOOLS
# =============================================================================


@mcp.tool()
async def memorize(
    content: str,
    ctx: Context,
    session_id: str | None = None,
    summary: str | None = None,
    author_role: str = "user",
    importance: float = 1.0,
    tags: str | list[str] | None = None,
) -> dict[str, Any]:
    """Store a new memo for later search.

    The memo is embedded from its summary and content for semantic search.
    If embedding fails the memo is still stored and embedded later.

    Args:
        content: Text of the memo
        session_id: Conversation or session the memo belongs to
        summary: Optional short summary (searched alongside content)
        author_role: "user" (default), "agent" or "system"
        importance: 0.0-1.0 (default 1.0); contributes to ranking
        tags: Labels, as ["a", "b"] or "a,b"

    Returns:
        {success, id, message, has_embedding} or {success: False, error}
    """
    owner_id = _owner_id()
    if not owner_id:
        return tool_error("MEMOS_OWNER_ID is not configured")

    try:
        params = MemorizeParams(
            content=content,
            session_id=session_id,
            summary=summary,
            author_role=author_role,
            importance=importance,
            tags=tags or [],
        )
    except ValidationError as e:
        return tool_error(format_validation_error(e))

    memo_service = ctx.request_context.lifespan_context.memo_service
    try:
        record = await memo_service.create_memo(owner_id, MemoCreate(**params.model_dump()))
    except (InputValidationError, StoreError) as e:
        return tool_error(str(e))

    return {
        "success": True,
        "id": record.id,
        "message": f"Successfully created memo with ID: {record.id}",
        "has_embedding": record.has_embedding,
    }


@mcp.tool()
async def find_memories(
    query: str,
    ctx: Context,
    session_id: str | None = None,
    limit: int = 10,
    tags: str | list[str] | None = None,
    author_role: str | None = None,
    min_importance: float | None = None,
    max_importance: float | None = None,
    sort_by: str = "relevance",
    include_popular: bool = False,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    """Search memos with hybrid keyword, tag and semantic ranking.

    Args:
        query: What to look for (2-500 characters)
        session_id: Restrict to one session
        limit: Maximum results, 1-50 (default 10)
        tags: Only memos carrying at least one of these tags
        author_role: Only memos by "user", "agent" or "system"
        min_importance: Lower importance bound (0.0-1.0)
        max_importance: Upper importance bound (0.0-1.0)
        sort_by: "relevance" (default), "importance", "recency" or "popularity"
        include_popular: Boost frequently accessed memos
        start_date: Earliest creation date, YYYY-MM-DD or ISO timestamp
        end_date: Latest creation date, YYYY-MM-DD or ISO timestamp

    Returns:
        Numbered list of matching memos, or a "No memos found" message
    """
    owner_id = _owner_id()
    if not owner_id:
        return "Error searching memos: MEMOS_OWNER_ID is not configured"

    try:
        params = FindMemoriesParams(
            query=query,
            session_id=session_id,
            limit=limit,
            tags=tags or [],
            author_role=author_role,
            min_importance=min_importance,
            max_importance=max_importance,
            sort_by=sort_by,
            include_popular=include_popular,
            start_date=start_date,
            end_date=end_date,
        )
        filters = params.to_filters()
    except ValidationError as e:
        return f"Error searching memos: {format_validation_error(e)}"

    search_service = ctx.request_context.lifespan_context.search_service
    try:
        results = await search_service.search(
            owner_id, params.query, filters=filters, sort_by=params.sort_by, limit=params.limit
        )
    except (InputValidationError, StoreError) as e:
        return f"Error searching memos: {e}"

    if not results:
        return format_no_results(params.query, params.filter_summary())
    return format_search_results(params.query, results, params.sort_by)


@mcp.tool()
async def get_memory(memo_id: int, ctx: Context) -> dict[str, Any]:
    """Fetch a single memo by id. Counts as an access.

    Args:
        memo_id: Id returned by memorize or shown in find_memories results

    Returns:
        {success, memo} or {success: False, error}
    """
    owner_id = _owner_id()
    if not owner_id:
        return tool_error("MEMOS_OWNER_ID is not configured")

    try:
        params = MemoIdParams(memo_id=memo_id)
    except ValidationError as e:
        return tool_error(format_validation_error(e))

    memo_service = ctx.request_context.lifespan_context.memo_service
    try:
        record = await memo_service.get_memo(owner_id, params.memo_id)
    except MemoNotFoundError as e:
        return tool_error(str(e), id=params.memo_id)
    except StoreError as e:
        return tool_error(str(e))

    return {"success": True, "memo": record.to_response()}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Main entry point for the MCP server."""
    logging.basicConfig(level=settings.server.log_level.upper())

    transport_mode = settings.server.mcp_transport
    logger.info(f"Starting Memos MCP server ({transport_mode} transport)")

    if transport_mode == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="http", host=settings.server.host, port=settings.server.mcp_port, stateless_http=True)


if __name__ == "__main__":
    main()
