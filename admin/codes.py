# admin/codes.py
"""Operator commands for access codes.

    python -m admin.codes create --label "팀 A" --max 50 --count 5
    python -m admin.codes list
    python -m admin.codes disable NEXIN-A3X9
"""
import argparse
import secrets
import sys

from gatedchat.access_codes import normalize_code, remaining_requests
from gatedchat.config import DB
from admin.db import (
    fetch_codes,
    get_conn,
    insert_code,
    reset_usage,
    set_active,
    set_max_requests,
)

# no 0/O or 1/I, codes get read aloud and typed by hand
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_SUFFIX_LEN = 4
DEFAULT_PREFIX = "NEXIN"
MAX_GENERATE_ATTEMPTS = 20


def generate_code(prefix: str = DEFAULT_PREFIX, length: int = CODE_SUFFIX_LEN) -> str:
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    prefix = normalize_code(prefix)
    return f"{prefix}-{suffix}" if prefix else suffix


def format_row(row: dict) -> str:
    state = "active" if row["is_active"] else "disabled"
    return (
        f"{row['code']:<16} {state:<8} "
        f"{row['used_requests']}/{row['max_requests']} "
        f"(remaining {remaining_requests(row)})  {row.get('label') or ''}"
    )


def cmd_create(conn, args) -> int:
    if args.max < 1:
        print("ERROR --max must be at least 1", file=sys.stderr)
        return 2
    created = []
    for _ in range(args.count):
        for _attempt in range(MAX_GENERATE_ATTEMPTS):
            row = insert_code(conn, generate_code(args.prefix), args.label, args.max)
            if row:
                created.append(row)
                break
        else:
            conn.rollback()
            print("ERROR could not generate a unique code, try a longer prefix", file=sys.stderr)
            return 1
    conn.commit()
    for row in created:
        print(f"OK {format_row(row)}")
    return 0


def cmd_list(conn, _args) -> int:
    for row in fetch_codes(conn):
        print(format_row(row))
    return 0


def _finish_update(conn, code: str, updated: bool, action: str) -> int:
    if not updated:
        conn.rollback()
        print(f"ERROR code not found: {code}", file=sys.stderr)
        return 1
    conn.commit()
    print(f"OK {action} {code}")
    return 0


def cmd_disable(conn, args) -> int:
    code = normalize_code(args.code)
    return _finish_update(conn, code, set_active(conn, code, False), "disabled")


def cmd_enable(conn, args) -> int:
    code = normalize_code(args.code)
    return _finish_update(conn, code, set_active(conn, code, True), "enabled")


def cmd_reset(conn, args) -> int:
    code = normalize_code(args.code)
    return _finish_update(conn, code, reset_usage(conn, code), "reset")


def cmd_set_max(conn, args) -> int:
    if args.max < 0:
        print("ERROR max must not be negative", file=sys.stderr)
        return 2
    code = normalize_code(args.code)
    return _finish_update(conn, code, set_max_requests(conn, code, args.max), f"max={args.max}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="admin.codes", description="Manage chat access codes")
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create", help="issue new codes")
    p_create.add_argument("--label", required=True)
    p_create.add_argument("--max", type=int, required=True, help="request quota per code")
    p_create.add_argument("--count", type=int, default=1)
    p_create.add_argument("--prefix", default=DEFAULT_PREFIX)
    p_create.set_defaults(func=cmd_create)

    p_list = sub.add_parser("list", help="show all codes and their usage")
    p_list.set_defaults(func=cmd_list)

    for name, func, help_text in (
        ("disable", cmd_disable, "switch a code off"),
        ("enable", cmd_enable, "switch a code back on"),
        ("reset", cmd_reset, "set used requests back to 0"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("code")
        p.set_defaults(func=func)

    p_max = sub.add_parser("set-max", help="change a code's quota")
    p_max.add_argument("code")
    p_max.add_argument("max", type=int)
    p_max.set_defaults(func=cmd_set_max)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    conn = get_conn(DB)
    try:
        return args.func(conn, args)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
