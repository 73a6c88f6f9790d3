from psycopg2.extras import RealDictCursor

CODE_DISABLED_MESSAGE = "비활성화된 코드입니다."


def quota_exceeded_message(max_requests: int) -> str:
    return f"사용 한도({max_requests}회)를 초과했습니다."


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def get_access_code(conn, code: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT code, label, max_requests, used_requests, is_active
            FROM access_codes
            WHERE code = %s
            """,
            (code,),
        )
        return cur.fetchone()


def remaining_requests(row: dict) -> int:
    return max(int(row["max_requests"]) - int(row["used_requests"]), 0)


def access_state_error(row: dict) -> tuple[int, str] | None:
    """Return (status, message) when the code may not be used right now.

    The disabled check always wins over the quota check, so a deactivated code
    reports as disabled whatever its usage.
    """
    if not row.get("is_active"):
        return 403, CODE_DISABLED_MESSAGE
    max_requests = int(row.get("max_requests") or 0)
    if int(row.get("used_requests") or 0) >= max_requests:
        return 429, quota_exceeded_message(max_requests)
    return None


def charge_access_code(conn, code: str) -> dict | None:
    """Consume one request from the code's quota in a single statement.

    Returns the updated counters, or None when the code is inactive, missing
    or already at its limit. The caller commits.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE access_codes
            SET used_requests = used_requests + 1
            WHERE code = %s
              AND is_active
              AND used_requests < max_requests
            RETURNING code, used_requests, max_requests
            """,
            (code,),
        )
        return cur.fetchone()
