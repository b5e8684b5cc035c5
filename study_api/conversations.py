import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from psycopg2.extras import RealDictCursor

from study_api.events import log_chat_event

TITLE_MAX_CHARS = 50
REPLACEMENT_TITLE = "Continued conversation"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS study_conversation (
  conversation_id TEXT PRIMARY KEY,
  owner_id TEXT NOT NULL,
  title TEXT NOT NULL,
  model TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS study_conversation_owner_idx ON study_conversation (owner_id);
CREATE TABLE IF NOT EXISTS study_message (
  conversation_id TEXT NOT NULL REFERENCES study_conversation (conversation_id),
  position INTEGER NOT NULL,
  role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
  content TEXT NOT NULL,
  created_at TEXT NOT NULL,
  PRIMARY KEY (conversation_id, position)
);
"""


def ensure_schema(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    conn.commit()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_title(first_user_message: str) -> str:
    if len(first_user_message) > TITLE_MAX_CHARS:
        return first_user_message[: TITLE_MAX_CHARS - 3] + "..."
    return first_user_message


def _stamp(messages: List[dict]) -> List[dict]:
    now = _now()
    return [{"role": m["role"], "content": m["content"], "timestamp": now} for m in messages]


class ConversationStore:
    """Conversation documents keyed by owner.

    Records live in memory and, when a connection is given, are mirrored into
    ``study_conversation`` / ``study_message``. Turns are only ever appended.
    """

    def __init__(self):
        self._conversations: Dict[str, dict] = {}

    def _mem_create(
        self,
        owner_id: str,
        title: str,
        model: str,
        messages: List[dict],
        conversation_id: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> dict:
        conversation_id = conversation_id or uuid.uuid4().hex
        now = created_at or _now()
        record = {
            "conversation_id": conversation_id,
            "owner_id": owner_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
            "model": model,
            "messages": list(messages),
        }
        self._conversations[conversation_id] = record
        return record

    def create(self, owner_id: str, title: str, model: str, messages: List[dict], conn=None) -> dict:
        if conn is None:
            return self._mem_create(owner_id, title, model, messages)
        conversation_id = uuid.uuid4().hex
        now = _now()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO study_conversation
                    (conversation_id, owner_id, title, model, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (conversation_id, owner_id, title, model, now, now),
                )
                self._insert_messages(cur, conversation_id, messages, start=0)
            conn.commit()
        except Exception:
            conn.rollback()
            return self._mem_create(owner_id, title, model, messages)
        return self._mem_create(
            owner_id, title, model, messages, conversation_id=conversation_id, created_at=now
        )

    def _insert_messages(self, cur, conversation_id: str, messages: List[dict], start: int) -> None:
        for offset, m in enumerate(messages):
            cur.execute(
                """
                INSERT INTO study_message (conversation_id, position, role, content, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (conversation_id, start + offset, m["role"], m["content"], m["timestamp"]),
            )

    def get(self, conversation_id: str, conn=None) -> Optional[dict]:
        record = self._conversations.get(conversation_id)
        if record is not None:
            return record
        if conn is None:
            return None
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT conversation_id, owner_id, title, model, created_at, updated_at
                    FROM study_conversation
                    WHERE conversation_id = %s
                    """,
                    (conversation_id,),
                )
                conv = cur.fetchone()
                if not conv:
                    return None
                cur.execute(
                    """
                    SELECT role, content, created_at
                    FROM study_message
                    WHERE conversation_id = %s
                    ORDER BY position
                    """,
                    (conversation_id,),
                )
                messages = [
                    {"role": row["role"], "content": row["content"], "timestamp": str(row["created_at"])}
                    for row in cur.fetchall()
                ]
        except Exception:
            conn.rollback()
            return self._conversations.get(conversation_id)
        record = {
            "conversation_id": conv["conversation_id"],
            "owner_id": conv["owner_id"],
            "title": conv["title"],
            "model": conv["model"],
            "created_at": str(conv["created_at"]),
            "updated_at": str(conv["updated_at"]),
            "messages": messages,
        }
        self._conversations[conversation_id] = record
        return record

    def append(self, conversation_id: str, messages: List[dict], conn=None) -> Optional[dict]:
        record = self.get(conversation_id, conn=conn)
        if record is None:
            return None
        updated_at = _now()
        if conn is not None:
            try:
                with conn.cursor() as cur:
                    self._insert_messages(cur, conversation_id, messages, start=len(record["messages"]))
                    cur.execute(
                        """
                        UPDATE study_conversation
                        SET updated_at = %s
                        WHERE conversation_id = %s
                        """,
                        (updated_at, conversation_id),
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                log_chat_event("conversation_append_failed", {"conversation_id": conversation_id})
                return record
        # Memory follows the database only after a successful commit.
        record["messages"].extend(messages)
        record["updated_at"] = updated_at
        return record

    def list_for_owner(self, owner_id: str, conn=None) -> List[dict]:
        if conn is not None:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        "SELECT conversation_id FROM study_conversation WHERE owner_id = %s",
                        (owner_id,),
                    )
                    ids = [row["conversation_id"] for row in cur.fetchall()]
                for conversation_id in ids:
                    self.get(conversation_id, conn=conn)
            except Exception:
                conn.rollback()
        records = [r for r in self._conversations.values() if r["owner_id"] == owner_id]
        records.sort(key=lambda r: r["updated_at"], reverse=True)
        return records

    def save_turn(
        self,
        owner_id: str,
        conversation_id: Optional[str],
        user_message: dict,
        assistant_message: dict,
        model: str,
        title: Optional[str] = None,
        history: Optional[List[dict]] = None,
        conn=None,
    ) -> dict:
        turn = _stamp([user_message, assistant_message])

        if not conversation_id:
            record = self.create(owner_id, make_title(user_message["content"]), model, turn, conn=conn)
            log_chat_event(
                "conversation_created",
                {"conversation_id": record["conversation_id"], "owner_id": owner_id, "model": model},
            )
            return record

        record = self.get(conversation_id, conn=conn)
        if record is not None:
            self.append(conversation_id, turn, conn=conn)
            log_chat_event(
                "conversation_appended",
                {"conversation_id": conversation_id, "messages": len(record["messages"])},
            )
            return record

        # The stored conversation is gone; rebuild it from what the client still holds.
        seeded = _stamp(history or []) + turn
        record = self.create(owner_id, title or REPLACEMENT_TITLE, model, seeded, conn=conn)
        log_chat_event(
            "conversation_replaced",
            {"conversation_id": record["conversation_id"], "owner_id": owner_id},
        )
        return record


store = ConversationStore()
