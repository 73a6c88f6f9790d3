import json
import os
import queue
import threading
import time
from typing import Iterator, List, Optional

import requests
from urllib3.exceptions import ReadTimeoutError

from gatedchat.config import MAX_DURATION_SEC, MAX_OUTPUT_TOKENS
from gatedchat.events import log_chat_event

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-5-mini")
OPENAI_CONNECT_TIMEOUT_SEC = float(os.getenv("OPENAI_CONNECT_TIMEOUT_SEC", "10"))
LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "2000"))

SYSTEM_PROMPT = os.getenv(
    "SYSTEM_PROMPT",
    "당신은 NEXINOUS의 AI 어시스턴트입니다. 친절하고 명확하게 한국어로 답변해 주세요.",
)

PROVIDER_ERROR_MESSAGE = "응답 생성 중 오류가 발생했습니다. 다시 시도해주세요."
TIMEOUT_ERROR_MESSAGE = "응답 시간이 초과되었습니다. 다시 시도해주세요."


class CompletionError(Exception):
    def __init__(self, reason: str, message: str = PROVIDER_ERROR_MESSAGE):
        super().__init__(message)
        self.reason = reason
        self.message = message


class CompletionTimeout(CompletionError):
    def __init__(self):
        super().__init__("timeout", TIMEOUT_ERROR_MESSAGE)


def _remaining(deadline: float) -> float:
    return max(deadline - time.monotonic(), 0.0)


def build_request_payload(messages: List[dict], max_tokens: Optional[int] = None) -> dict:
    return {
        "model": OPENAI_MODEL,
        "messages": [{"role": "system", "content": SYSTEM_PROMPT}, *messages],
        "stream": True,
        "max_completion_tokens": int(max_tokens or MAX_OUTPUT_TOKENS),
    }


_LINES_END = object()


def _read_lines(res, out: queue.Queue) -> None:
    try:
        for line in res.iter_lines(decode_unicode=True):
            out.put(line)
    except Exception as exc:
        out.put(exc)
    else:
        out.put(_LINES_END)


def _lines_until(res, deadline: float) -> Iterator[str]:
    """Yield response lines, raising queue.Empty once the deadline passes
    even when the provider has stopped sending."""
    out = queue.Queue()
    threading.Thread(target=_read_lines, args=(res, out), daemon=True).start()
    while True:
        item = out.get(timeout=_remaining(deadline))
        if item is _LINES_END:
            return
        if isinstance(item, Exception):
            raise item
        yield item


def _is_read_timeout(exc: requests.RequestException) -> bool:
    reason = exc.args[0] if exc.args else None
    return isinstance(exc, requests.Timeout) or isinstance(reason, ReadTimeoutError)


def _close_in_background(res) -> None:
    # close() blocks on the buffer lock held by a stalled reader thread
    threading.Thread(target=res.close, daemon=True).start()


def _parse_sse_data(line: str) -> Optional[str]:
    if not line or not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def stream_completion(
    messages: List[dict],
    max_tokens: Optional[int] = None,
    deadline: Optional[float] = None,
) -> Iterator[str]:
    """Yield text deltas from the provider's streaming chat completion.

    Every failure, including running past ``deadline`` (a ``time.monotonic``
    value), surfaces as ``CompletionError`` so callers can end the stream
    cleanly. Closing the generator closes the upstream connection.
    """
    if deadline is None:
        deadline = time.monotonic() + MAX_DURATION_SEC
    url = f"{OPENAI_BASE_URL}/chat/completions"
    payload = build_request_payload(messages, max_tokens)
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}
    start = time.perf_counter()
    try:
        res = requests.post(
            url,
            json=payload,
            headers=headers,
            stream=True,
            timeout=(
                min(OPENAI_CONNECT_TIMEOUT_SEC, _remaining(deadline)) or 0.001,
                _remaining(deadline) or 0.001,
            ),
        )
    except requests.Timeout:
        log_chat_event("llm_timeout", {"model": OPENAI_MODEL, "stage": "connect"})
        raise CompletionTimeout()
    except requests.RequestException:
        log_chat_event("llm_error", {"model": OPENAI_MODEL, "error": "request_failed"})
        raise CompletionError("request_failed")

    chars = 0
    try:
        if res.status_code >= 400:
            log_chat_event(
                "llm_error",
                {"model": OPENAI_MODEL, "error": "http_status", "status": res.status_code},
            )
            raise CompletionError("http_status")
        # event streams often omit the charset and requests would fall back to latin-1
        res.encoding = "utf-8"
        try:
            for line in _lines_until(res, deadline):
                if time.monotonic() >= deadline:
                    log_chat_event("llm_timeout", {"model": OPENAI_MODEL, "stage": "stream", "chars": chars})
                    raise CompletionTimeout()
                data = _parse_sse_data(line)
                if data is None:
                    continue
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    log_chat_event("llm_error", {"model": OPENAI_MODEL, "error": "malformed_chunk"})
                    raise CompletionError("malformed_chunk")
                if chunk.get("error"):
                    log_chat_event("llm_error", {"model": OPENAI_MODEL, "error": "provider_error"})
                    raise CompletionError("provider_error")
                for choice in chunk.get("choices") or []:
                    delta = (choice.get("delta") or {}).get("content")
                    if not delta:
                        continue
                    if not chars:
                        first_ms = int((time.perf_counter() - start) * 1000)
                        log_chat_event("llm_latency", {"model": OPENAI_MODEL, "first_token_ms": first_ms})
                        if first_ms > LLM_SLOW_MS:
                            log_chat_event("llm_slow", {"model": OPENAI_MODEL, "first_token_ms": first_ms})
                    chars += len(delta)
                    yield delta
        except queue.Empty:
            log_chat_event("llm_timeout", {"model": OPENAI_MODEL, "stage": "stream", "chars": chars})
            raise CompletionTimeout()
        except requests.RequestException as exc:
            if _is_read_timeout(exc) or time.monotonic() >= deadline:
                log_chat_event("llm_timeout", {"model": OPENAI_MODEL, "stage": "stream", "chars": chars})
                raise CompletionTimeout()
            log_chat_event("llm_error", {"model": OPENAI_MODEL, "error": "stream_broken", "chars": chars})
            raise CompletionError("stream_broken")
    finally:
        _close_in_background(res)

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_chat_event("chat_stream_done", {"model": OPENAI_MODEL, "chars": chars, "elapsed_ms": elapsed_ms})
