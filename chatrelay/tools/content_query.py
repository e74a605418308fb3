"""
CMS content lookup tool, exposed to the model as `query_contentstack_content`.
"""
from __future__ import annotations

from typing import Any

from chatrelay.config import get_config
from chatrelay.tools.base import BaseTool, ToolArgumentsError
from chatrelay.tools.contentstack import ContentLookup, ContentstackClient


class ContentQueryTool(BaseTool):
    name = "query_contentstack_content"
    description = (
        "Query content from the CMS when users ask about products, articles, "
        "events, or other content-specific information."
    )
    parameters = {
        "type": "object",
        "properties": {
            "content_type": {
                "type": "string",
                "description": 'The content type to query (e.g. "product", "article", "event")',
            },
            "query": {"type": "string", "description": "Search query to find relevant content"},
            "limit": {
                "type": "number",
                "description": "Maximum number of results to return",
                "default": 5,
            },
        },
        "required": ["content_type", "query"],
    }

    def __init__(self, lookup: ContentLookup, default_limit: int = 5):
        self.lookup = lookup
        self.default_limit = default_limit

    async def run(self, content_type: Any = None, query: Any = "", limit: Any = None, **_: Any) -> list[dict]:
        if not isinstance(content_type, str) or not content_type.strip():
            raise ToolArgumentsError("content_type is required")
        if query is None:
            query = ""
        if not isinstance(query, str):
            raise ToolArgumentsError("query must be a string")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, (int, float))):
            raise ToolArgumentsError("limit must be a number")
        if limit is None or limit < 1:
            limit = self.default_limit

        return await self.lookup.query(content_type.strip(), query, int(limit))


def get_enabled_tools(lookup: ContentLookup | None = None) -> list[BaseTool]:
    """Return the list of tools enabled in config."""
    cfg = get_config()
    tools: list[BaseTool] = []

    if cfg.tools.content_query.enabled:
        lookup = lookup or ContentstackClient.from_config(cfg.contentstack)
        tools.append(ContentQueryTool(lookup, default_limit=cfg.tools.content_query.default_limit))

    return tools
