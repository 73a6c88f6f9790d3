import os
import time
from typing import Optional

import redis


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
VERIFY_FAIL_LIMIT = int(os.getenv("VERIFY_FAIL_LIMIT", "10"))
VERIFY_FAIL_WINDOW_SEC = int(os.getenv("VERIFY_FAIL_WINDOW_SEC", "600"))

_REDIS_CLIENT = None
_REDIS_AVAILABLE = True
_MEM_FAILS = {}


def _get_redis():
    global _REDIS_CLIENT, _REDIS_AVAILABLE
    if not _REDIS_AVAILABLE:
        return None
    if _REDIS_CLIENT is None:
        client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            client.ping()
        except redis.RedisError:
            _REDIS_AVAILABLE = False
            return None
        _REDIS_CLIENT = client
    return _REDIS_CLIENT


def _fail_key(identifier: str) -> str:
    return f"verify:fail:{identifier}"


def _mem_get(key: str) -> Optional[dict]:
    data = _MEM_FAILS.get(key)
    if not data:
        return None
    expires_ts = int(data.get("expires_at_ts") or 0)
    if expires_ts and time.time() >= expires_ts:
        _MEM_FAILS.pop(key, None)
        return None
    return data


_RECORD_FAIL_LUA = """
local key = KEYS[1]
local ttl = tonumber(ARGV[1])
local new_count = redis.call("INCR", key)
if new_count == 1 then
  redis.call("EXPIRE", key, ttl)
end
return {new_count, redis.call("TTL", key)}
"""


def verify_block_status(identifier: str, limit: int | None = None) -> dict:
    limit = int(limit or VERIFY_FAIL_LIMIT)
    if not identifier:
        return {"status": "ok", "count": 0, "limit": limit}
    key = _fail_key(identifier)
    client = _get_redis()
    if client is None:
        data = _mem_get(key)
        count = int(data.get("count") or 0) if data else 0
        retry_after = max(int(data["expires_at_ts"] - time.time()), 1) if data else 0
    else:
        pipe = client.pipeline()
        pipe.get(key)
        pipe.ttl(key)
        raw, ttl = pipe.execute()
        count = int(raw or 0)
        retry_after = max(int(ttl or 0), 1)
    if count >= limit:
        return {"status": "limit", "count": count, "limit": limit, "retry_after": retry_after}
    return {"status": "ok", "count": count, "limit": limit}


def record_verify_failure(identifier: str) -> dict:
    if not identifier:
        return {"count": 0}
    key = _fail_key(identifier)
    ttl = max(60, VERIFY_FAIL_WINDOW_SEC)
    client = _get_redis()
    if client is None:
        data = _mem_get(key)
        if not data:
            data = {"count": 0, "expires_at_ts": int(time.time()) + ttl}
            _MEM_FAILS[key] = data
        data["count"] = int(data.get("count") or 0) + 1
        return {"count": data["count"]}
    result = client.eval(_RECORD_FAIL_LUA, 1, key, ttl)
    return {"count": int(result[0]) if result else 0}


def clear_verify_failures(identifier: str) -> None:
    if not identifier:
        return
    key = _fail_key(identifier)
    client = _get_redis()
    if client is None:
        _MEM_FAILS.pop(key, None)
        return
    client.delete(key)
