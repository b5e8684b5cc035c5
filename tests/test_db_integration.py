import os

import pytest
import psycopg2

from study_api.config import DB
from study_api.conversations import ConversationStore, ensure_schema


def _get_conn():
    return psycopg2.connect(**DB)


@pytest.mark.skipif(os.getenv("STUDY_DB_TEST") != "1", reason="STUDY_DB_TEST not enabled")
def test_conversation_round_trip_db_integration():
    with _get_conn() as conn:
        ensure_schema(conn)
        writer = ConversationStore()
        record = writer.save_turn(
            "integration-owner",
            None,
            {"role": "user", "content": "What does Psalm 23 teach?"},
            {"role": "assistant", "content": "The Lord is a shepherd who provides."},
            "gpt-4o-mini",
            conn=conn,
        )
        writer.save_turn(
            "integration-owner",
            record["conversation_id"],
            {"role": "user", "content": "And verse 4?"},
            {"role": "assistant", "content": "Comfort in the valley."},
            "gpt-4o-mini",
            conn=conn,
        )

        reader = ConversationStore()
        loaded = reader.get(record["conversation_id"], conn=conn)
        assert loaded is not None
        assert [m["content"] for m in loaded["messages"]][-2:] == [
            "And verse 4?",
            "Comfort in the valley.",
        ]
        assert record["conversation_id"] in {
            r["conversation_id"] for r in reader.list_for_owner("integration-owner", conn=conn)
        }
