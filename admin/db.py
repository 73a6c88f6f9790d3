# admin/db.py
import psycopg2
from psycopg2.extras import RealDictCursor

INSERT_CODE_SQL = """
INSERT INTO access_codes (code, label, max_requests, used_requests, is_active)
VALUES (%s, %s, %s, 0, TRUE)
ON CONFLICT (code) DO NOTHING
RETURNING code, label, max_requests, used_requests, is_active
"""


def get_conn(cfg):
    return psycopg2.connect(**cfg)


def insert_code(conn, code, label, max_requests):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(INSERT_CODE_SQL, (code, label, max_requests))
        return cur.fetchone()


def fetch_codes(conn):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("""
            SELECT code, label, max_requests, used_requests, is_active
            FROM access_codes
            ORDER BY code
        """)
        return cur.fetchall()


def set_active(conn, code, is_active):
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE access_codes SET is_active = %s WHERE code = %s",
            (is_active, code),
        )
        return cur.rowcount > 0


def reset_usage(conn, code):
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE access_codes SET used_requests = 0 WHERE code = %s",
            (code,),
        )
        return cur.rowcount > 0


def set_max_requests(conn, code, max_requests):
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE access_codes SET max_requests = %s WHERE code = %s",
            (max_requests, code),
        )
        return cur.rowcount > 0
