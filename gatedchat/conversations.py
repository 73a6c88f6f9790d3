from psycopg2.extras import RealDictCursor


def list_conversations(conn) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, title
            FROM conversations
            ORDER BY created_at DESC
            """
        )
        return cur.fetchall()


def create_conversation(conn, title: str | None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO conversations (title)
            VALUES (%s)
            RETURNING id, title, created_at
            """,
            (title,),
        )
        return cur.fetchone()


def list_messages(conn, conversation_id: str) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, conversation_id, role, content, created_at
            FROM messages
            WHERE conversation_id = %s
            ORDER BY created_at, id
            """,
            (conversation_id,),
        )
        return cur.fetchall()


def add_message(conn, conversation_id: str, role: str | None, content: str | None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO messages (conversation_id, role, content)
            VALUES (%s, %s, %s)
            RETURNING id, conversation_id, role, content, created_at
            """,
            (conversation_id, role, content),
        )
        return cur.fetchone()
