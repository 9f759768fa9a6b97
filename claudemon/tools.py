# ---------------------------------------------------------------------------
# Server-side web search, attached only on the turn after a [SEARCH: ...]
# ---------------------------------------------------------------------------

WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
    # One lookup per turn keeps latency inside the request timeout
    "max_uses": 1,
}


def request_tools(search_query: str | None, search_enabled: bool) -> list[dict]:
    """Tools to attach to the next request."""
    if search_enabled and search_query:
        return [dict(WEB_SEARCH_TOOL)]
    return []
