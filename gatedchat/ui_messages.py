"""Client-side chat message format: parsing incoming UI messages and framing
the outgoing token stream as server-sent events the web client consumes."""
import json
import uuid
from typing import Iterable, Iterator, List

from gatedchat.completion import CompletionError

MODEL_ROLES = {"system", "user", "assistant"}

STREAM_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "x-vercel-ai-ui-message-stream": "v1",
    "X-Accel-Buffering": "no",
}


class MessageFormatError(ValueError):
    pass


def message_text(message: dict) -> str:
    parts = message.get("parts")
    if isinstance(parts, list):
        return "".join(
            part.get("text") or ""
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text"
        )
    content = message.get("content")
    if isinstance(content, str):
        return content
    return ""


def parse_ui_messages(payload) -> List[dict]:
    if not isinstance(payload, dict):
        raise MessageFormatError("body must be an object")
    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise MessageFormatError("messages must be a non-empty list")
    if not all(isinstance(m, dict) for m in messages):
        raise MessageFormatError("messages must be objects")
    for message in messages:
        parts = message.get("parts")
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                raise MessageFormatError("parts must be objects")
            text = part.get("text")
            if part.get("type") == "text" and text is not None and not isinstance(text, str):
                raise MessageFormatError("text parts must carry a string")
    return messages


def last_message_text(messages: List[dict]) -> str:
    return message_text(messages[-1])


def to_model_messages(messages: List[dict]) -> List[dict]:
    converted = []
    for message in messages:
        role = message.get("role")
        if role not in MODEL_ROLES:
            continue
        text = message_text(message)
        if not text:
            continue
        converted.append({"role": role, "content": text})
    return converted


def _frame(payload) -> str:
    if isinstance(payload, str):
        return f"data: {payload}\n\n"
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def ui_message_stream(deltas: Iterable[str]) -> Iterator[str]:
    message_id = f"msg-{uuid.uuid4().hex}"
    text_id = f"txt-{uuid.uuid4().hex[:12]}"
    text_open = False
    yield _frame({"type": "start", "messageId": message_id})
    try:
        for delta in deltas:
            if not text_open:
                yield _frame({"type": "text-start", "id": text_id})
                text_open = True
            yield _frame({"type": "text-delta", "id": text_id, "delta": delta})
    except CompletionError as exc:
        if text_open:
            yield _frame({"type": "text-end", "id": text_id})
        yield _frame({"type": "error", "errorText": exc.message})
        yield _frame("[DONE]")
        return
    if text_open:
        yield _frame({"type": "text-end", "id": text_id})
    yield _frame({"type": "finish"})
    yield _frame("[DONE]")
