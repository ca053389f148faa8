"""会话状态机。

维护有序消息列表，并把传输层的流式回调应用到对应的占位消息上：

1. begin_turn: 追加已定稿的用户消息 + 空的助手占位消息，状态 awaiting_first_chunk。
2. apply_chunk: 首个 chunk 进入 streaming；之后只追加，不替换。
3. complete: settled_success，占位消息定稿，并触发一次交易汇总刷新。
4. fail: settled_error，占位消息整体覆盖为错误文本（唯一的覆盖操作）。

每个 StreamSession 只修改自己的占位消息（通过单调 ID 区分），
因此多个并发回复之间不会互相串写。回调可能来自工作线程，统一用 RLock 串行化。
"""

from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from audit_ai.domain.conversation import Conversation, StreamSession, TurnState
from audit_ai.domain.exceptions import BusinessError
from audit_ai.domain.models import HistoryEntry, Message, MessageIdSource, MessageStatus, Sender
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.transport.base import StreamCallbacks


def format_stream_error(error: Exception) -> str:
    message = error.message if isinstance(error, BusinessError) else str(error)
    return f"Connection Error: {message or type(error).__name__}\n\nPlease check the backend console for details."


class ConversationStateMachine:
    def __init__(
        self,
        conversation: Optional[Conversation] = None,
        id_source: Optional[MessageIdSource] = None,
        on_refresh: Optional[Callable[[], None]] = None,
        on_settled: Optional[Callable[[Message], None]] = None,
        supersede_active: bool = False,
    ):
        self.conversation = conversation or Conversation()
        self._ids = id_source or MessageIdSource()
        self._on_refresh = on_refresh
        self._on_settled = on_settled
        self._supersede_active = supersede_active
        self._sessions: Dict[str, StreamSession] = {}
        self._latest: Optional[StreamSession] = None
        self._lock = RLock()

    # ---- 查询 ----

    @property
    def state(self) -> TurnState:
        """最近一次回合的状态；尚未发送过消息时为 idle。"""

        with self._lock:
            return self._latest.state if self._latest else TurnState.IDLE

    @property
    def active_sessions(self) -> List[StreamSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active]

    @property
    def is_typing(self) -> bool:
        return bool(self.active_sessions)

    def messages(self) -> List[Message]:
        with self._lock:
            return self.conversation.messages

    # ---- 消息写入 ----

    def add_message(
        self,
        text: str,
        sender: Sender,
        attached_image: Optional[str] = None,
        status: MessageStatus = MessageStatus.SETTLED,
        timestamp: Optional[datetime] = None,
        remote_id: Optional[str] = None,
    ) -> Message:
        with self._lock:
            msg = Message(
                id=self._ids.next_id(),
                text=text,
                sender=sender,
                timestamp=timestamp or datetime.now(timezone.utc),
                attached_image=attached_image,
                status=status,
                remote_id=remote_id,
            )
            return self.conversation.append(msg)

    def begin_turn(self, text: str, attached_image: Optional[str] = None) -> StreamSession:
        """追加用户消息与助手占位消息，返回新的 StreamSession。"""

        if self._supersede_active:
            self.cancel_all()
        with self._lock:
            user_msg = self.add_message(text, "user", attached_image=attached_image)
            placeholder = self.add_message("", "assistant", status=MessageStatus.PENDING)
            session = StreamSession(
                request_id=f"rq-{uuid4().hex}",
                placeholder_id=placeholder.id,
                user_message_id=user_msg.id,
            )
            self._sessions[session.request_id] = session
            self._latest = session
        logger.info(
            "Started turn",
            extra={"extra": {"request_id": session.request_id, "placeholder_id": placeholder.id}},
        )
        return session

    def apply_chunk(self, session: StreamSession, chunk: str) -> None:
        with self._lock:
            if not session.is_active:
                logger.warning(
                    "Dropped chunk for inactive session",
                    extra={"extra": {"request_id": session.request_id, "state": session.state.value}},
                )
                return
            if session.state is TurnState.AWAITING_FIRST_CHUNK:
                session.state = TurnState.STREAMING
            session.accumulated_text += chunk
            self.conversation.get(session.placeholder_id).append_text(chunk)

    def complete(self, session: StreamSession) -> None:
        with self._lock:
            if not session.is_active:
                return
            placeholder = self.conversation.get(session.placeholder_id)
            placeholder.settle(MessageStatus.SETTLED)
            session.state = TurnState.SETTLED_SUCCESS
            self._sessions.pop(session.request_id, None)
        logger.info(
            "Turn completed",
            extra={"extra": {"request_id": session.request_id, "length": len(session.accumulated_text)}},
        )
        # 助手回复可能在后端创建了交易，刷新一次汇总
        if self._on_refresh:
            try:
                self._on_refresh()
            except Exception as e:
                logger.exception(f"Refresh after turn failed: {e}", extra={"extra": {"request_id": session.request_id}})
        self._notify_settled(placeholder)

    def fail(self, session: StreamSession, error: Exception) -> None:
        with self._lock:
            if not session.is_active:
                return
            placeholder = self.conversation.get(session.placeholder_id)
            placeholder.overwrite_text(format_stream_error(error))
            placeholder.settle(MessageStatus.FAILED)
            session.state = TurnState.SETTLED_ERROR
            self._sessions.pop(session.request_id, None)
        logger.error(
            f"Turn failed: {error}",
            extra={"extra": {"request_id": session.request_id, "partial_length": len(session.accumulated_text)}},
        )
        self._notify_settled(placeholder)

    def settle_with_text(self, session: StreamSession, text: str, failed: bool = False) -> None:
        """一次性写入完整文本并立即定稿（附件分析结果不走流式）。"""

        with self._lock:
            if not session.is_active:
                return
            placeholder = self.conversation.get(session.placeholder_id)
            placeholder.overwrite_text(text)
            placeholder.settle(MessageStatus.FAILED if failed else MessageStatus.SETTLED)
            session.accumulated_text = text
            session.state = TurnState.SETTLED_ERROR if failed else TurnState.SETTLED_SUCCESS
            self._sessions.pop(session.request_id, None)
        self._notify_settled(placeholder)

    # ---- 取消 ----

    def cancel(self, session: StreamSession) -> None:
        with self._lock:
            if not session.is_active:
                return
            session.cancelled.set()
            placeholder = self.conversation.get(session.placeholder_id)
            if not placeholder.text:
                placeholder.overwrite_text("Response cancelled.")
            placeholder.settle(MessageStatus.FAILED)
            session.state = TurnState.SETTLED_ERROR
            self._sessions.pop(session.request_id, None)
        logger.info("Turn cancelled", extra={"extra": {"request_id": session.request_id}})

    def cancel_all(self) -> None:
        for session in self.active_sessions:
            self.cancel(session)

    def callbacks_for(self, session: StreamSession) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=lambda chunk: self.apply_chunk(session, chunk),
            on_complete=lambda: self.complete(session),
            on_error=lambda error: self.fail(session, error),
        )

    # ---- 历史 ----

    def hydrate(self, entries: Iterable[HistoryEntry], welcome_text: Optional[str] = None) -> None:
        """用后端历史替换当前消息；没有历史时可放入一条欢迎语。"""

        with self._lock:
            self.cancel_all()
            self.conversation.clear()
            count = 0
            for entry in entries:
                self.add_message(entry.text, entry.sender, timestamp=entry.timestamp, remote_id=entry.id)
                count += 1
            if count == 0 and welcome_text:
                self.add_message(welcome_text, "assistant")

    def clear(self) -> None:
        with self._lock:
            self.cancel_all()
            self.conversation.clear()
            self._latest = None

    def _notify_settled(self, message: Message) -> None:
        if not self._on_settled:
            return
        try:
            self._on_settled(message)
        except Exception as e:
            # 定稿钩子（如语音播报）失败不影响会话状态
            logger.exception(f"Settled hook failed: {e}", extra={"extra": {"message_id": message.id}})
