from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Iterator, List, Optional

from .models import Message


class Conversation:
    """按时间顺序排列的消息列表，只追加，不重排。"""

    def __init__(self, messages: Optional[List[Message]] = None):
        self._messages: List[Message] = list(messages or [])

    def append(self, message: Message) -> Message:
        if any(m.id == message.id for m in self._messages):
            raise ValueError(f"duplicate message id: {message.id}")
        self._messages.append(message)
        return message

    def get(self, message_id: int) -> Message:
        for m in self._messages:
            if m.id == message_id:
                return m
        raise KeyError(message_id)

    def clear(self) -> None:
        self._messages.clear()

    @property
    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    STREAMING = "streaming"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"

    @property
    def is_settled(self) -> bool:
        return self in (TurnState.SETTLED_SUCCESS, TurnState.SETTLED_ERROR)


@dataclass
class StreamSession:
    """一次进行中的助手回复的簿记对象。

    每次发送消息创建一个，流结束（成功/失败/取消）后即失效。
    placeholder_id 指向该会话唯一可以修改的占位消息。
    """

    request_id: str
    placeholder_id: int
    user_message_id: int
    state: TurnState = TurnState.AWAITING_FIRST_CHUNK
    accumulated_text: str = ""
    cancelled: Event = field(default_factory=Event)

    @property
    def is_active(self) -> bool:
        return not self.state.is_settled and not self.cancelled.is_set()
