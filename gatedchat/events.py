import hashlib
import json
import os
from datetime import datetime, timezone

EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")

_HASHED_FIELDS = ("access_code",)


def _hash_id(value: str) -> str:
    raw = f"{LOG_ID_SALT}{value}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _write_record(record: dict, mode: str = "a") -> None:
    try:
        dir_path = os.path.dirname(EVENT_LOG_PATH)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        with open(EVENT_LOG_PATH, mode, encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    except OSError:
        pass


def log_event(event_type: str, payload: dict | None = None) -> None:
    safe_payload = dict(payload or {})
    for field in _HASHED_FIELDS:
        if safe_payload.get(field):
            safe_payload[field] = _hash_id(str(safe_payload[field]))
    record = {
        "event_type": event_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        **safe_payload,
    }
    _write_record(record)


def log_api_event(event_type: str, payload: dict | None = None) -> None:
    log_event(event_type, {"channel": "api", **(payload or {})})


def log_chat_event(event_type: str, payload: dict | None = None) -> None:
    log_event(event_type, {"channel": "chat", **(payload or {})})


def reset_event_log(reason: str) -> None:
    record = {
        "event_type": "log_reset",
        "ts": datetime.now(timezone.utc).isoformat(),
        "reason": reason,
    }
    _write_record(record, mode="w")
