from audit_ai.domain.exceptions import NetworkError
from audit_ai.services.history import HistoryService
from audit_ai.services.transactions import RemoteTransactionAggregate


class FakeApi:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.calls = []

    def get(self, endpoint, **kw):
        self.calls.append(("GET", endpoint))
        if self.error:
            raise self.error
        return self.responses.get(endpoint, {})

    def delete(self, endpoint, **kw):
        self.calls.append(("DELETE", endpoint))
        if self.error:
            raise self.error
        return {}


def test_history_role_mapping():
    api = FakeApi({"/ai/history/u1": {"history": [
        {"id": 5, "role": "user", "parts": "hello", "timestamp": "2024-05-01T10:00:00Z"},
        {"id": 6, "role": "model", "parts": "hi there", "timestamp": None},
    ]}})
    entries = HistoryService(api).get_history("u1")
    assert [(e.id, e.sender, e.text) for e in entries] == [("5", "user", "hello"), ("6", "assistant", "hi there")]
    assert entries[0].timestamp.year == 2024
    assert entries[1].timestamp is None


def test_history_failure_returns_empty():
    svc = HistoryService(FakeApi(error=NetworkError(code="NETWORK_ERROR", message="down")))
    assert svc.get_history("u1") == []
    assert svc.list_conversations("u1") == []
    assert svc.clear_history("u1") is False


def test_clear_history_calls_delete():
    api = FakeApi()
    assert HistoryService(api).clear_history("user 1") is True
    assert api.calls == [("DELETE", "/ai/history/user%201")]


def test_list_conversations():
    api = FakeApi({"/ai/conversations/u1": {"conversations": [
        {"date": "2024-05-01", "messageCount": 4, "preview": "cash flow", "lastMessage": "2024-05-01T18:30:00Z"},
    ]}})
    [summary] = HistoryService(api).list_conversations("u1")
    assert summary.message_count == 4
    assert summary.preview == "cash flow"
    assert summary.last_message.hour == 18


def test_transaction_aggregate_refresh_keeps_last_snapshot_on_error():
    api = FakeApi({"/transactions/summary/u1": {"revenue": 500, "expenses": 700, "profit": -200}})
    agg = RemoteTransactionAggregate(api, "u1")
    agg.refresh()
    assert agg.snapshot().profit == -200

    api.error = NetworkError(code="NETWORK_ERROR", message="down")
    agg.refresh()
    assert agg.snapshot().profit == -200


def test_transaction_aggregate_without_user():
    api = FakeApi()
    agg = RemoteTransactionAggregate(api, None)
    agg.refresh()
    assert agg.snapshot().revenue == 0
    assert api.calls == []


def test_transaction_aggregate_keeps_snapshot_on_malformed_summary():
    api = FakeApi({"/transactions/summary/u1": {"revenue": 900, "expenses": 100, "profit": 800}})
    agg = RemoteTransactionAggregate(api, "u1")
    agg.refresh()

    api.responses["/transactions/summary/u1"] = {"revenue": "n/a", "expenses": None, "profit": 0}
    agg.refresh()

    assert agg.snapshot().revenue == 900
    assert agg.snapshot().profit == 800
