from __future__ import annotations

import json
from html import escape

from auth.models import TokenSet

_STYLE = """
    body { font-family: system-ui; max-width: 800px; margin: 50px auto; padding: 20px; }
    .status { padding: 15px; border-radius: 8px; margin: 20px 0; }
    .status.ok { background: #d4edda; color: #155724; }
    .status.error { background: #f8d7da; color: #721c24; }
    pre { background: #f4f4f4; padding: 15px; border-radius: 5px; overflow-x: auto; }
    .token { background: #fff3cd; padding: 10px; margin: 10px 0; border-radius: 5px;
             word-break: break-all; user-select: all; }
"""


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        f"  <title>{escape(title)}</title>\n  <style>{_STYLE}</style>\n"
        f"</head>\n<body>\n{body}\n</body>\n</html>\n"
    )


def render_status_page(*, configured: bool, proxy_url: str) -> str:
    if configured:
        snippet = json.dumps(
            {"mcpServers": {"clickup": {"url": proxy_url, "headers": {"X-API-Key": "YOUR_MCP_API_KEY"}}}},
            indent=2,
        )
        body = (
            '<div class="status ok"><strong>Status:</strong> OAuth configured</div>\n'
            "<p>Send MCP requests to this URL with an <code>X-API-Key</code> header.</p>\n"
            f"<pre>{escape(snippet)}</pre>"
        )
    else:
        body = (
            '<div class="status error"><strong>Status:</strong> OAuth not configured</div>\n'
            "<ol>\n"
            "  <li>Set <code>CLICKUP_CLIENT_ID</code>, <code>CLICKUP_CLIENT_SECRET</code> "
            "and <code>MCP_API_KEY</code>.</li>\n"
            f"  <li>Register <code>{escape(proxy_url.rstrip('/'))}/oauth/callback</code> "
            "as the redirect URL of your ClickUp app.</li>\n"
            '  <li>Visit <a href="/oauth/start">/oauth/start</a>.</li>\n'
            "</ol>"
        )
    return _page("ClickUp MCP Proxy", f"<h1>ClickUp MCP Proxy</h1>\n{body}")


def render_tokens_page(tokens: TokenSet) -> str:
    parts = [
        '<div class="status ok"><h1>OAuth completed</h1></div>',
        "<p>The token set has been stored; the proxy is ready.</p>",
        "<h3>Access Token:</h3>",
        f'<div class="token">{escape(tokens.access_token)}</div>',
    ]
    if tokens.refresh_token:
        parts.append("<h3>Refresh Token:</h3>")
        parts.append(f'<div class="token">{escape(tokens.refresh_token)}</div>')
    parts.append('<p><a href="/">Back to status</a></p>')
    return _page("OAuth Success", "\n".join(parts))
