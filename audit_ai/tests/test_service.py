"""测试 ChatService 的端到端流程（全部使用假协作者）。"""

import threading

import pytest

from audit_ai.api.service import IMAGE_ANALYSIS_FAILED, ChatService
from audit_ai.domain.conversation import TurnState
from audit_ai.domain.exceptions import ApiError, NetworkError, ValidationError
from audit_ai.domain.models import ConversationSummary, FinancialContextSnapshot, HistoryEntry, MessageStatus
from audit_ai.ingestion.attachments import AttachmentIngestor, Upload
from audit_ai.voice.adapter import Voice, VoiceAdapter


class SettingsStub:
    api_base_url = "http://test.local/api"
    http_timeout = 1.0
    stream_idle_timeout = 1.0
    max_token_length = 4000
    max_image_bytes = 5 * 1024 * 1024
    spreadsheet_extensions = [".csv", ".xlsx", ".xls"]
    supersede_active_stream = False
    voice_dispatch_delay = 0.0
    speech_lang = "en-US"
    preferred_voice_names = ["Female", "Samantha"]
    monitor_interval_seconds = 3600
    notification_tag = "audit-ai"


class ScriptedTransport:
    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.calls = []

    def stream_chat(self, message, user_id, financial_context, callbacks, should_abort=None):
        self.calls.append({"message": message, "user_id": user_id, "context": financial_context})
        for c in self.chunks:
            callbacks.on_chunk(c)
        if self.error:
            callbacks.on_error(self.error)
        else:
            callbacks.on_complete()

    def chat(self, message, user_id, financial_context=None):
        return "".join(self.chunks)


class FakeHistory:
    def __init__(self, entries=()):
        self.entries = list(entries)
        self.cleared = 0

    def get_history(self, user_id):
        return list(self.entries)

    def clear_history(self, user_id):
        self.cleared += 1
        self.entries = []
        return True

    def list_conversations(self, user_id):
        return []


class FakeTransactions:
    def __init__(self, snap=None):
        self.snap = snap or FinancialContextSnapshot.from_metrics(revenue=1000, expenses=400, profit=600)
        self.refreshes = 0

    def snapshot(self):
        return self.snap

    def refresh(self):
        self.refreshes += 1


class FakeApi:
    def __init__(self, body=None, error=None):
        self.body = body or {}
        self.error = error
        self.calls = []

    def post(self, endpoint, data=None, **kw):
        self.calls.append({"endpoint": endpoint, "data": data, **kw})
        if self.error:
            raise self.error
        return self.body


class FakeSynth:
    available = True

    def __init__(self):
        self.spoken = []

    def voices(self):
        return [Voice("Alex"), Voice("Samantha")]

    def speak(self, text, voice, lang, rate, pitch):
        self.spoken.append((text, voice.name if voice else None))


def make_service(transport=None, history=None, transactions=None, api=None, voice=None, user_id="u1"):
    cfg = SettingsStub()
    api = api or FakeApi()
    return ChatService(
        user_id=user_id,
        api=api,
        transport=transport or ScriptedTransport(["Hi", " there", "!"]),
        history=history or FakeHistory(),
        ingestor=AttachmentIngestor(api, cfg),
        transactions=transactions or FakeTransactions(),
        voice=voice,
        cfg=cfg,
    )


def test_send_hello_scenario():
    tx = FakeTransactions()
    svc = make_service(transactions=tx)

    session = svc.send_message("Hello")

    msgs = svc.messages
    assert [m.sender for m in msgs] == ["user", "assistant"]
    assert msgs[1].text == "Hi there!"
    assert session.state is TurnState.SETTLED_SUCCESS
    assert tx.refreshes == 1


def test_send_includes_financial_context():
    transport = ScriptedTransport(["ok"])
    svc = make_service(transport=transport)
    svc.stage_document("notes.txt", "Q1 summary")

    svc.send_message("Analyze this")

    ctx = transport.calls[0]["context"]
    assert ctx["financial"]["revenue"]["current"] == 1000
    assert ctx["financial"]["profitMargin"] == pytest.approx(60.0)
    assert ctx["documentAnalysis"] == {"filename": "notes.txt", "content": "Q1 summary"}


def test_send_without_content_or_user_is_noop():
    transport = ScriptedTransport(["x"])
    assert make_service(transport=transport).send_message("   ") is None
    assert make_service(transport=transport, user_id=None).send_message("hi") is None
    assert transport.calls == []


def test_transport_error_renders_inline():
    svc = make_service(transport=ScriptedTransport(["part"], error=ApiError(code="API_ERROR", message="HTTP 500")))

    svc.send_message("Hello")

    last = svc.messages[-1]
    assert "HTTP 500" in last.text
    assert last.status is MessageStatus.FAILED
    assert svc.state.state is TurnState.SETTLED_ERROR


def test_oversized_image_leaves_conversation_unchanged():
    api = FakeApi()
    svc = make_service(api=api)
    before = svc.messages

    with pytest.raises(ValidationError):
        svc.attach(Upload("huge.png", b"\0" * (6 * 1024 * 1024), "image/png"))

    assert svc.messages == before
    assert api.calls == []


def test_image_message_bypasses_streaming():
    transport = ScriptedTransport(["should not stream"])
    api = FakeApi({"success": True, "data": {
        "amount": 12, "vendor": "Cafe", "date": "2024-01-02",
        "category": "Meals", "description": "Lunch", "confidence": 0.8,
    }})
    svc = make_service(transport=transport, api=api)

    assert svc.attach(Upload("r.jpg", b"jpeg", "image/jpeg")) is None
    session = svc.send_message()

    assert transport.calls == []
    msgs = svc.messages
    assert msgs[0].text == "Uploaded image"
    assert msgs[0].attached_image.startswith("data:image/jpeg;base64,")
    assert "Vendor: Cafe" in msgs[1].text
    assert session.state is TurnState.SETTLED_SUCCESS


def test_image_analysis_failure():
    api = FakeApi(error=NetworkError(code="NETWORK_ERROR", message="down"))
    svc = make_service(api=api)

    svc.send_message(image="data:image/png;base64,AA==")

    assert svc.messages[-1].text == IMAGE_ANALYSIS_FAILED
    assert svc.messages[-1].status is MessageStatus.FAILED


def test_spreadsheet_import_refreshes_when_rows_imported():
    tx = FakeTransactions()
    api = FakeApi({"success": True, "data": {"filename": "q1.csv", "imported": 3, "skipped": 0, "errors": []}})
    svc = make_service(api=api, transactions=tx)

    msg = svc.attach(Upload("q1.csv", b"a,b\n", "text/csv"))

    assert msg.sender == "assistant"
    assert "Imported 3 transactions" in msg.text
    assert tx.refreshes == 1

    api.body = {"success": True, "data": {"filename": "empty.csv", "imported": 0}}
    svc.attach(Upload("empty.csv", b"", "text/csv"))
    assert tx.refreshes == 1


def test_spreadsheet_failure_appended_as_message():
    api = FakeApi(error=ApiError(code="API_ERROR", message="HTTP 500"))
    svc = make_service(api=api)

    msg = svc.attach(Upload("q1.xlsx", b"x"))

    assert "HTTP 500" in msg.text
    assert svc.messages[-1] is msg


def test_mount_hydrates_history_and_welcome():
    history = FakeHistory([HistoryEntry(id="1", sender="user", text="old question")])
    svc = make_service(history=history)
    svc.mount()
    try:
        assert [m.text for m in svc.messages] == ["old question"]
        assert svc.monitor.running
    finally:
        svc.unmount()
    assert not svc.monitor.running

    empty = make_service(history=FakeHistory())
    empty.mount()
    empty.unmount()
    assert "revenue is $1,000" in empty.messages[0].text


def test_clear_history_twice():
    history = FakeHistory([HistoryEntry(id="1", sender="user", text="x")])
    svc = make_service(history=history)
    svc.send_message("Hello")

    assert svc.clear_history() is True
    assert svc.messages == []
    assert svc.clear_history() is True
    assert svc.messages == []
    assert history.cleared == 2


def test_voice_output_after_settle():
    synth = FakeSynth()
    voice = VoiceAdapter(synthesizer=synth, cfg=SettingsStub())
    svc = make_service(transport=ScriptedTransport(["**Profit** is up\nGood"]), voice=voice)

    svc.send_message("How are we doing?")
    assert synth.spoken == []

    voice.output_enabled = True
    svc.send_message("And now?")
    assert synth.spoken == [("Profit is up. Good", "Samantha")]


def test_background_send_completes():
    svc = make_service()
    session = svc.send_message("Hello", background=True)
    for worker in list(svc._workers):
        worker.join(timeout=2)
    assert session.state is TurnState.SETTLED_SUCCESS
    assert svc.messages[-1].text == "Hi there!"


def test_voice_transcript_dispatches_send():
    done = threading.Event()

    class Recognizer:
        available = True

        def start(self, lang, on_result, on_error, on_end):
            on_result("What is my profit?")
            on_end()

        def stop(self):
            pass

    transport = ScriptedTransport(["Positive"])
    original = transport.stream_chat

    def stream_chat(*args, **kwargs):
        original(*args, **kwargs)
        done.set()

    transport.stream_chat = stream_chat
    svc = make_service(transport=transport, voice=VoiceAdapter(recognizer=Recognizer(), cfg=SettingsStub()))

    assert svc.start_voice_input() is True
    assert done.wait(2)
    assert svc.messages[0].text == "What is my profit?"
    assert svc.messages[1].text == "Positive"


@pytest.mark.parametrize("background", [False, True])
def test_malformed_image_result_settles_as_failed(background):
    api = FakeApi({"success": True, "data": {"amount": "12,50", "confidence": 0.9}})
    svc = make_service(api=api)

    session = svc.send_message("receipt", image="data:image/png;base64,AA==", background=background)
    for worker in list(svc._workers):
        worker.join(timeout=2)

    assert session.state is TurnState.SETTLED_ERROR
    assert svc.messages[-1].text == IMAGE_ANALYSIS_FAILED
    assert svc.messages[-1].status is MessageStatus.FAILED
    assert not svc.state.is_typing


def test_malformed_spreadsheet_result_appended_as_failure():
    tx = FakeTransactions()
    api = FakeApi({"success": True, "data": {"filename": "q1.csv", "imported": "many"}})
    svc = make_service(api=api, transactions=tx)

    msg = svc.attach(Upload("q1.csv", b"a,b\n", "text/csv"))

    assert msg.text.startswith("Failed to analyze document")
    assert msg.status is MessageStatus.FAILED
    assert tx.refreshes == 0


def test_document_passed_directly_to_send():
    transport = ScriptedTransport(["ok"])
    svc = make_service(transport=transport)

    svc.send_message(document={"filename": "notes.txt", "content": "Q2"})

    assert svc.messages[0].text == "Analyzed notes.txt"
    assert transport.calls[0]["context"]["documentAnalysis"] == {"filename": "notes.txt", "content": "Q2"}


def test_chat_once_uses_snapshot_context():
    transport = ScriptedTransport(["full", " reply"])
    calls = []
    original = transport.chat

    def chat(message, user_id, financial_context=None):
        calls.append((message, user_id, financial_context))
        return original(message, user_id, financial_context)

    transport.chat = chat
    svc = make_service(transport=transport)

    assert svc.chat_once("Summarize") == "full reply"
    message, user_id, ctx = calls[0]
    assert (message, user_id) == ("Summarize", "u1")
    assert ctx["financial"]["revenue"]["current"] == 1000
    assert svc.messages == []


def test_list_conversations_delegates_to_history():
    summary = ConversationSummary(date="2024-05-01", message_count=2, preview="cash", last_message=None)

    class History(FakeHistory):
        def list_conversations(self, user_id):
            return [summary] if user_id == "u1" else []

    assert make_service(history=History()).list_conversations() == [summary]
    assert make_service(history=History(), user_id=None).list_conversations() == []
