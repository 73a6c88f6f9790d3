import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests
from urllib3.exceptions import ReadTimeoutError

import gatedchat.completion as completion_mod
from gatedchat.completion import (
    CompletionError,
    CompletionTimeout,
    build_request_payload,
    stream_completion,
)
from gatedchat.ui_messages import message_text, to_model_messages, ui_message_stream


class FakeResponse:
    def __init__(self, lines, status_code=200, error=None):
        self._lines = lines
        self.status_code = status_code
        self.encoding = None
        self.closed = threading.Event()
        self._error = error

    def close(self):
        self.closed.set()

    def iter_lines(self, decode_unicode=False):
        for line in self._lines:
            yield line
        if self._error:
            raise self._error


def _chunk(text):
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False)


@pytest.fixture
def posted(monkeypatch):
    state = {"calls": [], "response": FakeResponse([])}

    def fake_post(url, json=None, headers=None, stream=False, timeout=None):
        state["calls"].append({"url": url, "json": json, "stream": stream, "timeout": timeout})
        if isinstance(state["response"], Exception):
            raise state["response"]
        return state["response"]

    monkeypatch.setattr(completion_mod.requests, "post", fake_post)
    return state


def test_payload_carries_system_prompt_and_output_bound(monkeypatch):
    monkeypatch.setattr(completion_mod, "OPENAI_MODEL", "gpt-5-mini")
    payload = build_request_payload([{"role": "user", "content": "안녕"}], 1000)

    assert payload["model"] == "gpt-5-mini"
    assert payload["stream"] is True
    assert payload["max_completion_tokens"] == 1000
    assert payload["messages"][0] == {"role": "system", "content": completion_mod.SYSTEM_PROMPT}
    assert payload["messages"][1] == {"role": "user", "content": "안녕"}


def test_stream_yields_deltas_until_done(posted):
    posted["response"] = FakeResponse(
        [
            ": keep-alive",
            "",
            _chunk("안녕"),
            "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
            _chunk("하세요"),
            "data: [DONE]",
            _chunk("ignored"),
        ]
    )
    deltas = list(stream_completion([{"role": "user", "content": "hi"}], 50))

    assert deltas == ["안녕", "하세요"]
    assert posted["calls"][0]["url"].endswith("/chat/completions")
    assert posted["calls"][0]["stream"] is True
    assert posted["calls"][0]["json"]["max_completion_tokens"] == 50
    assert posted["response"].encoding == "utf-8"
    assert posted["response"].closed.wait(1)


def test_http_error_status_raises_completion_error(posted):
    posted["response"] = FakeResponse([], status_code=500)

    with pytest.raises(CompletionError) as exc:
        list(stream_completion([{"role": "user", "content": "hi"}]))
    assert exc.value.reason == "http_status"


def test_connection_failure_raises_completion_error(posted):
    posted["response"] = requests.ConnectionError("refused")

    with pytest.raises(CompletionError) as exc:
        list(stream_completion([{"role": "user", "content": "hi"}]))
    assert exc.value.reason == "request_failed"
    assert not isinstance(exc.value, CompletionTimeout)


def test_connect_timeout_raises_timeout(posted):
    posted["response"] = requests.ConnectTimeout("slow")

    with pytest.raises(CompletionTimeout):
        list(stream_completion([{"role": "user", "content": "hi"}]))


def test_broken_stream_after_partial_output(posted):
    posted["response"] = FakeResponse(
        [_chunk("부분")], error=requests.exceptions.ChunkedEncodingError("reset")
    )
    gen = stream_completion([{"role": "user", "content": "hi"}])

    assert next(gen) == "부분"
    with pytest.raises(CompletionError) as exc:
        next(gen)
    assert exc.value.reason == "stream_broken"


def test_read_timeout_mid_stream_is_a_timeout(posted):
    posted["response"] = FakeResponse(
        [_chunk("a")], error=requests.ConnectionError(ReadTimeoutError(None, None, "read timed out"))
    )

    with pytest.raises(CompletionTimeout):
        list(stream_completion([{"role": "user", "content": "hi"}]))


def test_provider_error_chunk(posted):
    posted["response"] = FakeResponse(["data: " + json.dumps({"error": {"message": "overloaded"}})])

    with pytest.raises(CompletionError) as exc:
        list(stream_completion([{"role": "user", "content": "hi"}]))
    assert exc.value.reason == "provider_error"


def test_past_deadline_raises_timeout(posted):
    posted["response"] = FakeResponse([_chunk("late")])

    with pytest.raises(CompletionTimeout):
        list(stream_completion([{"role": "user", "content": "hi"}], deadline=time.monotonic() - 1))


def test_message_text_prefers_text_parts():
    message = {
        "role": "user",
        "parts": [
            {"type": "text", "text": "a"},
            {"type": "reasoning", "text": "skip"},
            {"type": "text", "text": "b"},
        ],
    }
    assert message_text(message) == "ab"
    assert message_text({"role": "user", "content": "plain"}) == "plain"
    assert message_text({"role": "user"}) == ""


def test_to_model_messages_drops_unknown_roles_and_empty_text():
    messages = [
        {"role": "user", "parts": [{"type": "text", "text": "q"}]},
        {"role": "tool", "parts": [{"type": "text", "text": "x"}]},
        {"role": "assistant", "parts": []},
        {"role": "assistant", "content": "a"},
    ]
    assert to_model_messages(messages) == [
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
    ]


def _decode(frames):
    out = []
    for frame in frames:
        assert frame.startswith("data: ") and frame.endswith("\n\n")
        data = frame[len("data: "):-2]
        out.append(data if data == "[DONE]" else json.loads(data))
    return out


def test_ui_stream_with_no_output_still_finishes():
    frames = _decode(ui_message_stream(iter([])))

    assert [f["type"] for f in frames[:-1]] == ["start", "finish"]
    assert frames[-1] == "[DONE]"


def test_ui_stream_reports_timeout_message():
    def deltas():
        yield "조금"
        raise CompletionTimeout()

    frames = _decode(ui_message_stream(deltas()))
    error = [f for f in frames if f != "[DONE]" and f["type"] == "error"][0]

    assert error["errorText"] == completion_mod.TIMEOUT_ERROR_MESSAGE
    text_ids = {f["id"] for f in frames if f != "[DONE]" and f["type"].startswith("text-")}
    assert len(text_ids) == 1


@pytest.fixture
def stalling_provider(monkeypatch):
    """Local provider that sends one delta and then goes quiet."""
    release = threading.Event()

    class Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def do_POST(self):
            self.rfile.read(int(self.headers.get("Content-Length") or 0))
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Transfer-Encoding", "chunked")
            self.end_headers()
            body = (_chunk("hi") + "\n\n").encode("utf-8")
            self.wfile.write(b"%x\r\n%s\r\n" % (len(body), body))
            self.wfile.flush()
            release.wait(10)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    server.daemon_threads = True
    threading.Thread(target=server.serve_forever, daemon=True).start()
    monkeypatch.setattr(
        completion_mod, "OPENAI_BASE_URL", f"http://127.0.0.1:{server.server_address[1]}"
    )
    yield
    release.set()
    server.shutdown()
    server.server_close()


def test_stalled_provider_is_cut_off_at_deadline(stalling_provider):
    start = time.monotonic()
    deltas = []

    with pytest.raises(CompletionTimeout):
        for delta in stream_completion([{"role": "user", "content": "hi"}], deadline=start + 1.0):
            deltas.append(delta)

    assert deltas == ["hi"]
    assert time.monotonic() - start < 1.5
