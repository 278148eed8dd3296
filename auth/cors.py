from __future__ import annotations

from starlette.responses import JSONResponse, Response

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type, Authorization, X-API-Key, Mcp-Session-Id, Mcp-Protocol-Version"
    ),
}


def apply_cors_response(response: Response) -> Response:
    response.headers.update(CORS_HEADERS)
    return response


def cors_preflight_response() -> Response:
    return apply_cors_response(Response(status_code=204))


def cors_error_response(
    error: str,
    status_code: int,
    message: str | None = None,
) -> Response:
    payload = {"error": error}
    if message is not None:
        payload["message"] = message
    return apply_cors_response(JSONResponse(payload, status_code=status_code))
