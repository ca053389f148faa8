"""对外服务模块。

ChatService 把传输层、会话状态机、附件、历史、语音与主动监控组合在一起，
提供聊天页面所需的全部操作。所有依赖都通过构造函数显式传入，
不存在模块级的全局客户端实例。
"""

import threading
from typing import Dict, List, Optional

from audit_ai.auth.session import EnvSessionProvider, SessionProvider
from audit_ai.chat.state_machine import ConversationStateMachine
from audit_ai.config.settings import settings
from audit_ai.domain.conversation import StreamSession
from audit_ai.domain.exceptions import BusinessError
from audit_ai.domain.models import ConversationSummary, Message, MessageStatus
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.ingestion.attachments import AttachmentIngestor, Upload
from audit_ai.monitor.proactive import Notifier, ProactiveMonitor
from audit_ai.services.history import HistoryService
from audit_ai.services.transactions import RemoteTransactionAggregate, TransactionAggregate
from audit_ai.transport.base import ChatTransport
from audit_ai.transport.http_client import ApiClient
from audit_ai.transport.stream_client import StreamingChatClient
from audit_ai.voice.adapter import VoiceAdapter


SUGGESTED_PROMPTS: List[Dict[str, str]] = [
    {"text": "Explain double-entry bookkeeping", "category": "Fundamentals"},
    {"text": "Analyze current cash flow", "category": "Analysis"},
    {"text": "Draft an audit report", "category": "Reporting"},
    {"text": "Check for tax deductions", "category": "Tax"},
]

IMAGE_ANALYSIS_FAILED = "Failed to analyze image. Please try again."


class ChatService:
    """AI 会计助手聊天服务。"""

    def __init__(
        self,
        user_id: Optional[str],
        api: Optional[ApiClient] = None,
        transport: Optional[ChatTransport] = None,
        history: Optional[HistoryService] = None,
        ingestor: Optional[AttachmentIngestor] = None,
        transactions: Optional[TransactionAggregate] = None,
        voice: Optional[VoiceAdapter] = None,
        notifier: Optional[Notifier] = None,
        cfg=settings,
    ):
        self.user_id = user_id
        self._settings = cfg
        self._api = api or ApiClient(cfg=cfg)
        self._transport = transport or StreamingChatClient(self._api, cfg)
        self._history = history or HistoryService(self._api)
        self._ingestor = ingestor or AttachmentIngestor(self._api, cfg)
        self._transactions = transactions or RemoteTransactionAggregate(self._api, user_id)
        self.voice = voice or VoiceAdapter(cfg=cfg)
        self.state = ConversationStateMachine(
            on_refresh=self._transactions.refresh,
            on_settled=self._on_settled,
            supersede_active=getattr(cfg, "supersede_active_stream", False),
        )
        self.monitor = ProactiveMonitor(self._transactions.snapshot, notifier, cfg)
        self._staged_image: Optional[str] = None
        self._staged_document: Optional[Dict[str, str]] = None
        self._workers: List[threading.Thread] = []

    @property
    def suggested_prompts(self) -> List[Dict[str, str]]:
        return list(SUGGESTED_PROMPTS)

    @property
    def messages(self) -> List[Message]:
        return self.state.messages()

    # ---- 生命周期 ----

    def mount(self) -> None:
        """加载历史（无历史时放入欢迎语）并启动主动监控。"""

        if not self.user_id:
            return
        self._transactions.refresh()
        entries = self._history.get_history(self.user_id)
        self.state.hydrate(entries, welcome_text=self._welcome_text())
        self.monitor.start()
        logger.info("Chat mounted", extra={"extra": {"user_id": self.user_id, "history": len(entries)}})

    def unmount(self) -> None:
        self.monitor.stop()
        self.voice.stop_listening()
        self.state.cancel_all()
        for worker in self._workers:
            worker.join(timeout=1.0)
        self._workers.clear()

    def _welcome_text(self) -> str:
        snap = self._transactions.snapshot()
        return (
            "Hello! I'm your AI Accountant with real-time access to your organization's data. "
            f"I can see that your current revenue is ${snap.revenue:,.0f} and expenses are ${snap.expenses:,.0f}. "
            "I am a smart CFO and can help with taxes, audits, and financial planning. "
            "What would you like to know?"
        )

    # ---- 附件 ----

    def attach(self, upload: Upload) -> Optional[Message]:
        """处理用户选择的文件。

        图片只做暂存，随下一条消息一起发送；表格立即导入，并把结果
        作为助手消息追加到会话。校验错误直接抛出 ValidationError。
        """

        kind = self._ingestor.validate(upload)
        if kind == "image":
            self._staged_image = self._ingestor.encode_image(upload)
            return None
        try:
            summary = self._ingestor.import_spreadsheet(upload)
        except BusinessError as e:
            logger.error(f"Upload error: {e.message}", extra={"extra": {"filename": upload.filename}})
            return self.state.add_message(
                f"Failed to analyze document: {e.message}", "assistant", status=MessageStatus.FAILED
            )
        msg = self.state.add_message(summary.to_text(), "assistant")
        if summary.imported_count > 0:
            self._transactions.refresh()
        return msg

    def stage_document(self, filename: str, content: str) -> None:
        """暂存已解析的文档内容，随下一条消息作为 documentAnalysis 发送。"""

        self._staged_document = {"filename": filename, "content": content}

    def clear_attachments(self) -> None:
        self._staged_image = None
        self._staged_document = None

    # ---- 发送 ----

    def send_message(
        self,
        text: str = "",
        image: Optional[str] = None,
        document: Optional[Dict[str, str]] = None,
        background: bool = False,
    ) -> Optional[StreamSession]:
        """发送一条用户消息；没有内容或没有用户时不做任何事。

        image/document 未显式传入时使用已暂存的附件；document 形如
        {"filename": ..., "content": ...}，作为 documentAnalysis 随请求发送。
        background=True 时在工作线程中读取流，立即返回 StreamSession。
        """

        image = image or self._staged_image
        document = document or self._staged_document
        if (not (text or "").strip() and not image and not document) or not self.user_id:
            return None
        label = text or ("Uploaded image" if image else f"Analyzed {document['filename']}")
        self.clear_attachments()

        session = self.state.begin_turn(label, attached_image=image)
        if image:
            target, args = self._analyze_image, (session, image)
        else:
            payload = self._transactions.snapshot().to_payload(document)
            target, args = self._stream, (session, label, payload)

        if background:
            worker = threading.Thread(target=target, args=args, daemon=True)
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
            worker.start()
        else:
            target(*args)
        return session

    def _stream(self, session: StreamSession, text: str, payload: Dict) -> None:
        self._transport.stream_chat(
            text,
            self.user_id,
            payload,
            self.state.callbacks_for(session),
            should_abort=session.cancelled.is_set,
        )

    def _analyze_image(self, session: StreamSession, image: str) -> None:
        try:
            result = self._ingestor.analyze_image(image, self.user_id)
        except BusinessError as e:
            logger.error(f"Image analysis error: {e.message}", extra={"extra": {"request_id": session.request_id}})
            self.state.settle_with_text(session, IMAGE_ANALYSIS_FAILED, failed=True)
            return
        except Exception as e:
            # 工作线程中的意外异常同样只影响本回合
            logger.exception(f"Image analysis crashed: {e}", extra={"extra": {"request_id": session.request_id}})
            self.state.settle_with_text(session, IMAGE_ANALYSIS_FAILED, failed=True)
            return
        self.state.settle_with_text(session, result.to_text())

    def chat_once(self, text: str) -> str:
        """非流式回退：一次性获取完整回复。"""

        payload = self._transactions.snapshot().to_payload()
        return self._transport.chat(text, self.user_id, payload)

    # ---- 语音 ----

    def start_voice_input(self) -> bool:
        return self.voice.start_listening(lambda transcript: self.send_message(transcript))

    def stop_voice_input(self) -> None:
        self.voice.stop_listening()

    def _on_settled(self, message: Message) -> None:
        if message.sender == "assistant":
            self.voice.speak(message.text)

    # ---- 历史 ----

    def clear_history(self) -> bool:
        """清空本地与后端历史；可重复调用。"""

        self.state.clear()
        if not self.user_id:
            return True
        return self._history.clear_history(self.user_id)

    def list_conversations(self) -> List[ConversationSummary]:
        if not self.user_id:
            return []
        return self._history.list_conversations(self.user_id)


def build_chat_service(
    session_provider: Optional[SessionProvider] = None,
    user_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    cfg=settings,
) -> ChatService:
    """按配置组装一个 ChatService。"""

    provider = session_provider or EnvSessionProvider(cfg)
    if user_id is None:
        session = provider.get_session()
        user_id = (session.user_id if session else None) or getattr(cfg, "user_id", None)
    api = ApiClient(session_provider=provider, cfg=cfg)
    return ChatService(user_id=user_id, api=api, notifier=notifier, cfg=cfg)
