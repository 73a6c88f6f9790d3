import os

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from gatedchat.config import ACCESS_COOKIE_NAME
from gatedchat.events import log_api_event
from gatedchat.pages import BLOCKED_HTML

ALLOWED_IPS = os.getenv("ALLOWED_IPS", "")
TRUST_CLIENT_ADDR = os.getenv("TRUST_CLIENT_ADDR", "0") == "1"

LOOPBACK_IPS = ("127.0.0.1", "::1", "::ffff:127.0.0.1")
STATIC_PREFIXES = ("/static/", "/favicon.ico")
ACCESS_PAGE_PATH = "/access"
PUBLIC_PATHS = {ACCESS_PAGE_PATH, "/api/verify-code", "/health"}
UNKNOWN_IP = "unknown"


def _split_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def allowed_ips() -> set[str]:
    return set(LOOPBACK_IPS) | set(_split_env_list(ALLOWED_IPS))


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    if TRUST_CLIENT_ADDR and request.client:
        return request.client.host
    return UNKNOWN_IP


def is_static_path(path: str) -> bool:
    return path.startswith(STATIC_PREFIXES)


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


async def ip_allowlist_filter(request: Request, call_next):
    path = request.url.path
    if is_static_path(path):
        return await call_next(request)
    ip = get_client_ip(request)
    if ip != UNKNOWN_IP and ip in allowed_ips():
        return await call_next(request)

    log_api_event("ip_blocked", {"ip": ip, "path": path, "method": request.method})
    if is_api_path(path):
        return JSONResponse(
            status_code=403,
            content={"error": {"code": "ip_blocked", "message": "접근이 거부되었습니다."}},
        )
    return HTMLResponse(BLOCKED_HTML, status_code=403)


async def access_code_gate(request: Request, call_next):
    """Send page requests without the access cookie to the code-entry page.

    Only presence is checked here. API routes pass through and the chat
    endpoint validates the code itself.
    """
    path = request.url.path
    if is_static_path(path) or is_api_path(path) or path in PUBLIC_PATHS:
        return await call_next(request)
    if request.cookies.get(ACCESS_COOKIE_NAME):
        return await call_next(request)
    log_api_event("access_redirect", {"path": path})
    return RedirectResponse(ACCESS_PAGE_PATH, status_code=307)
