"""Stages of the /api/chat request pipeline.

The stages run strictly in this order and each one ends the request on
failure: credential, code lookup, activation, quota, payload parse, input
bound, charge. Generation starts only after the charge is committed, and a
failed generation is not refunded.
"""
import psycopg2
from fastapi import HTTPException

from gatedchat.access_codes import (
    access_state_error,
    charge_access_code,
    get_access_code,
    quota_exceeded_message,
)
from gatedchat.config import MAX_INPUT_CHARS
from gatedchat.events import log_chat_event
from gatedchat.ui_messages import MessageFormatError, last_message_text, parse_ui_messages

AUTH_REQUIRED_MESSAGE = "인증이 필요합니다."
INVALID_ACCESS_MESSAGE = "유효하지 않은 접근입니다."
MALFORMED_MESSAGES_MESSAGE = "메시지 형식이 올바르지 않습니다."
CHARGE_FAILED_MESSAGE = "사용량을 기록하지 못했습니다. 잠시 후 다시 시도해주세요."


def input_too_long_message(max_chars: int) -> str:
    return f"입력은 최대 {max_chars}자까지 가능합니다."


def _reject(reason: str, status_code: int, detail: str, code: str | None = None):
    log_chat_event("chat_rejected", {"reason": reason, "status": status_code, "access_code": code})
    raise HTTPException(status_code=status_code, detail=detail)


def lookup_access_code(conn, code: str) -> dict | None:
    if conn is None:
        return None
    try:
        return get_access_code(conn, code)
    except psycopg2.Error as exc:
        conn.rollback()
        log_chat_event("store_error", {"stage": "lookup", "error": str(exc).strip()})
        return None


def authorize_chat(conn, code: str | None) -> dict:
    if not code:
        _reject("no_cookie", 401, AUTH_REQUIRED_MESSAGE)
    row = lookup_access_code(conn, code)
    if not row:
        _reject("invalid_code", 401, INVALID_ACCESS_MESSAGE, code)
    state_error = access_state_error(row)
    if state_error:
        status_code, detail = state_error
        _reject("disabled" if status_code == 403 else "exhausted", status_code, detail, code)
    return row


def read_chat_input(payload, max_chars: int | None = None) -> list[dict]:
    max_chars = int(max_chars or MAX_INPUT_CHARS)
    try:
        messages = parse_ui_messages(payload)
    except MessageFormatError:
        _reject("malformed_messages", 400, MALFORMED_MESSAGES_MESSAGE)
    text = last_message_text(messages)
    if len(text) > max_chars:
        _reject("input_too_long", 400, input_too_long_message(max_chars))
    return messages


def charge_request(conn, code: str, row: dict) -> dict:
    try:
        charged = charge_access_code(conn, code)
        conn.commit()
    except psycopg2.Error as exc:
        conn.rollback()
        log_chat_event(
            "chat_charge_failed", {"access_code": code, "error": str(exc).strip()}
        )
        raise HTTPException(status_code=503, detail=CHARGE_FAILED_MESSAGE)
    if not charged:
        # lost the race against a concurrent request for the last unit
        _reject("exhausted", 429, quota_exceeded_message(int(row["max_requests"])), code)
    log_chat_event(
        "chat_charged",
        {
            "access_code": code,
            "used": charged["used_requests"],
            "max": charged["max_requests"],
        },
    )
    return charged
