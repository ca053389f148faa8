import threading

import pytest

from audit_ai.domain.conversation import Conversation, StreamSession, TurnState
from audit_ai.domain.models import (
    DocumentImportSummary,
    FinancialContextSnapshot,
    Message,
    MessageIdSource,
    MessageStatus,
)


def test_message_id_source_unique_under_threads():
    ids = MessageIdSource()
    seen = []
    lock = threading.Lock()

    def worker():
        local = [ids.next_id() for _ in range(500)]
        with lock:
            seen.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(seen) == len(set(seen)) == 2000


def test_message_lifecycle():
    m = Message(id=1, text="", sender="assistant", status=MessageStatus.PENDING)
    m.append_text("a")
    m.append_text("b")
    m.overwrite_text("error")
    m.settle()
    assert m.text == "error"
    with pytest.raises(RuntimeError):
        m.append_text("c")
    with pytest.raises(RuntimeError):
        m.overwrite_text("d")


def test_conversation_order_and_duplicates():
    conv = Conversation()
    conv.append(Message(id=1, text="a", sender="user"))
    conv.append(Message(id=2, text="b", sender="assistant"))
    assert [m.text for m in conv] == ["a", "b"]
    assert conv.last.id == 2
    with pytest.raises(ValueError):
        conv.append(Message(id=1, text="dup", sender="user"))
    with pytest.raises(KeyError):
        conv.get(99)


def test_snapshot_from_metrics():
    snap = FinancialContextSnapshot.from_metrics(revenue=200, expenses=150, profit=50)
    assert snap.profit_margin == pytest.approx(25.0)
    assert snap.cash_balance == 50
    assert FinancialContextSnapshot.from_metrics(revenue=0, expenses=10, profit=-10).profit_margin == 0.0

    payload = snap.to_payload()
    assert payload["financial"]["expenses"] == {"current": 150, "change": 0}
    assert "documentAnalysis" not in payload


def test_document_summary_from_payload():
    s = DocumentImportSummary.from_payload({"imported": "4"}, fallback_name="x.csv")
    assert s.filename == "x.csv"
    assert s.imported_count == 4
    assert s.errors == []
    assert "Skipped" not in s.to_text()


def test_stream_session_activity():
    s = StreamSession(request_id="r", placeholder_id=2, user_message_id=1)
    assert s.is_active
    s.cancelled.set()
    assert not s.is_active
    assert TurnState.SETTLED_ERROR.is_settled
    assert not TurnState.STREAMING.is_settled
