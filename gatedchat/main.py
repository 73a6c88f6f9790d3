import os
import time
from typing import List, Optional

import psycopg2
import redis
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatedchat.access_codes import access_state_error, normalize_code, remaining_requests
from gatedchat.completion import stream_completion
from gatedchat.config import (
    ACCESS_COOKIE_MAX_AGE,
    ACCESS_COOKIE_NAME,
    ACCESS_COOKIE_SECURE,
    API_TITLE,
    API_VERSION,
    DB,
    MAX_DURATION_SEC,
    MAX_INPUT_CHARS,
    MAX_OUTPUT_TOKENS,
    STATIC_DIR,
)
from gatedchat.conversations import (
    add_message,
    create_conversation,
    list_conversations,
    list_messages,
)
from gatedchat.events import log_api_event, reset_event_log
from gatedchat.gates import access_code_gate, get_client_ip, ip_allowlist_filter
from gatedchat.models import (
    ConversationCreateRequest,
    ConversationItem,
    ConversationRecord,
    LogoutResponse,
    MessageCreateRequest,
    MessageRecord,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from gatedchat.pages import ACCESS_HTML, HOME_HTML
from gatedchat.pipeline import (
    authorize_chat,
    charge_request,
    lookup_access_code,
    read_chat_input,
)
from gatedchat.ui_messages import STREAM_HEADERS, to_model_messages, ui_message_stream
from gatedchat.verify_limits import (
    clear_verify_failures,
    record_verify_failure,
    verify_block_status,
)

MISSING_CODE_MESSAGE = "코드를 입력해주세요."
INVALID_CODE_MESSAGE = "유효하지 않은 코드입니다."
VERIFY_THROTTLED_MESSAGE = "인증 시도가 너무 많습니다. 잠시 후 다시 시도해주세요."
THROTTLE_UNAVAILABLE_MESSAGE = "인증 서비스를 사용할 수 없습니다. 잠시 후 다시 시도해주세요."
INVALID_REQUEST_MESSAGE = "요청 형식이 올바르지 않습니다."

app = FastAPI(title=API_TITLE, version=API_VERSION)

# registered last runs first: the IP filter wraps the cookie gate
app.middleware("http")(access_code_gate)
app.middleware("http")(ip_allowlist_filter)

app.mount("/static", StaticFiles(directory=STATIC_DIR, check_dir=False), name="static")

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"

_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    429: "rate_limited",
    500: "store_error",
    503: "unavailable",
}


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.exception_handler(StarletteHTTPException)
def handle_http_exception(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": _ERROR_CODES.get(exc.status_code, "http_error"),
                "message": str(exc.detail),
            }
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "validation_error",
                "message": INVALID_REQUEST_MESSAGE,
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


def get_conn():
    try:
        conn = psycopg2.connect(**DB)
    except psycopg2.Error as exc:
        log_api_event("store_error", {"stage": "connect", "error": str(exc).strip()})
        raise HTTPException(status_code=500, detail=str(exc).strip())
    try:
        yield conn
    finally:
        conn.close()


def get_conn_or_none():
    """Connection for the credential checks, where an unreachable store is
    reported as an invalid credential rather than a server error."""
    try:
        conn = psycopg2.connect(**DB)
    except psycopg2.Error as exc:
        log_api_event("store_error", {"stage": "connect", "error": str(exc).strip()})
        yield None
        return
    try:
        yield conn
    finally:
        conn.close()


def _store_failure(conn, event_type: str, exc: psycopg2.Error):
    conn.rollback()
    message = str(exc).strip()
    log_api_event("store_error", {"event": event_type, "error": message})
    raise HTTPException(status_code=500, detail=message)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
def home_page():
    return HOME_HTML


@app.get("/access", response_class=HTMLResponse)
def access_page():
    return ACCESS_HTML


@app.post("/api/verify-code", response_model=VerifyCodeResponse)
def verify_code(
    request: Request,
    response: Response,
    payload: Optional[VerifyCodeRequest] = None,
    conn=Depends(get_conn_or_none),
):
    raw_code = payload.code if payload else None
    if not isinstance(raw_code, str) or not raw_code.strip():
        log_api_event("verify_failed", {"reason": "missing_code"})
        raise HTTPException(status_code=400, detail=MISSING_CODE_MESSAGE)

    client_ip = get_client_ip(request)
    try:
        block = verify_block_status(client_ip)
    except redis.RedisError:
        log_api_event("verify_failed", {"reason": "throttle_unavailable"})
        raise HTTPException(status_code=503, detail=THROTTLE_UNAVAILABLE_MESSAGE)
    if block.get("status") == "limit":
        log_api_event("verify_failed", {"reason": "throttled", "ip": client_ip})
        raise HTTPException(
            status_code=429,
            detail=VERIFY_THROTTLED_MESSAGE,
            headers={"Retry-After": str(block.get("retry_after") or 60)},
        )

    code = normalize_code(raw_code)
    row = lookup_access_code(conn, code)
    if not row:
        try:
            record_verify_failure(client_ip)
        except redis.RedisError:
            log_api_event("verify_throttle_error", {"ip": client_ip})
        log_api_event("verify_failed", {"reason": "not_found", "ip": client_ip})
        raise HTTPException(status_code=401, detail=INVALID_CODE_MESSAGE)

    state_error = access_state_error(row)
    if state_error:
        status_code, detail = state_error
        reason = "disabled" if status_code == 403 else "exhausted"
        log_api_event("verify_failed", {"reason": reason, "access_code": code})
        raise HTTPException(status_code=status_code, detail=detail)

    try:
        clear_verify_failures(client_ip)
    except redis.RedisError:
        log_api_event("verify_throttle_error", {"ip": client_ip})
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        row["code"],
        max_age=ACCESS_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=ACCESS_COOKIE_SECURE,
    )
    remaining = remaining_requests(row)
    log_api_event("verify_success", {"access_code": code, "remaining": remaining})
    return {"ok": True, "label": row.get("label"), "remaining": remaining}


@app.post("/api/logout", response_model=LogoutResponse)
def logout(response: Response):
    response.delete_cookie(ACCESS_COOKIE_NAME, path="/")
    log_api_event("logout", {})
    return {"ok": True}


@app.post("/api/chat")
async def chat(request: Request, conn=Depends(get_conn_or_none)):
    code = request.cookies.get(ACCESS_COOKIE_NAME)
    row = await run_in_threadpool(authorize_chat, conn, code)

    try:
        payload = await request.json()
    except ValueError:
        payload = None
    messages = read_chat_input(payload, MAX_INPUT_CHARS)

    await run_in_threadpool(charge_request, conn, code, row)

    deadline = time.monotonic() + MAX_DURATION_SEC
    deltas = stream_completion(to_model_messages(messages), MAX_OUTPUT_TOKENS, deadline)
    return StreamingResponse(ui_message_stream(deltas), headers=STREAM_HEADERS)


@app.get("/api/conversations", response_model=List[ConversationItem])
def get_conversations(conn=Depends(get_conn)):
    try:
        rows = list_conversations(conn)
    except psycopg2.Error as exc:
        _store_failure(conn, "conversation_list", exc)
    log_api_event("conversation_list", {"count": len(rows)})
    return rows


@app.post("/api/conversations", response_model=ConversationRecord, status_code=201)
def post_conversation(
    payload: Optional[ConversationCreateRequest] = None, conn=Depends(get_conn)
):
    title = payload.title if payload else None
    try:
        record = create_conversation(conn, title)
        conn.commit()
    except psycopg2.Error as exc:
        _store_failure(conn, "conversation_create", exc)
    log_api_event("conversation_create", {"conversation_id": record["id"]})
    return record


@app.get("/api/conversations/{conversation_id}/messages", response_model=List[MessageRecord])
def get_messages(conversation_id: str, conn=Depends(get_conn)):
    try:
        rows = list_messages(conn, conversation_id)
    except psycopg2.Error as exc:
        _store_failure(conn, "message_list", exc)
    log_api_event("message_list", {"conversation_id": conversation_id, "count": len(rows)})
    return rows


@app.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=MessageRecord,
    status_code=201,
)
def post_message(
    conversation_id: str,
    payload: Optional[MessageCreateRequest] = None,
    conn=Depends(get_conn),
):
    payload = payload or MessageCreateRequest()
    try:
        record = add_message(conn, conversation_id, payload.role, payload.content)
        conn.commit()
    except psycopg2.Error as exc:
        _store_failure(conn, "message_create", exc)
    log_api_event(
        "message_create",
        {"conversation_id": conversation_id, "message_id": record["id"], "role": record["role"]},
    )
    return record


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "9000"))
    uvicorn.run("gatedchat.main:app", host="0.0.0.0", port=port, reload=True)
