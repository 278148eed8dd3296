from __future__ import annotations

import logging

LOGGER = logging.getLogger("cuproxy.gateway")
APP_VERSION = "0.1.0"

CLICKUP_MCP_URL = "https://mcp.clickup.com/mcp"
CLICKUP_TOKEN_URL = "https://api.clickup.com/api/v2/oauth/token"
CLICKUP_AUTH_URL = "https://app.clickup.com/api"

API_KEY_HEADER = "X-API-Key"

# Request headers copied to the upstream MCP call; everything else is dropped.
FORWARDED_REQUEST_HEADERS = (
    "content-type",
    "accept",
    "mcp-session-id",
    "mcp-protocol-version",
    "last-event-id",
)
