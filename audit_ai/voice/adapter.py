"""语音输入/输出适配层。

宿主环境通过构造函数注入 SpeechRecognizer / SpeechSynthesizer；
未注入时使用 Null 实现：调用时只发出 warning，不做任何事，
缺少语音引擎不会影响聊天本身。
"""

import re
import threading
import warnings
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from audit_ai.config.settings import settings
from audit_ai.infrastructure.logging.logger import logger


@dataclass
class Voice:
    name: str
    lang: str = ""


class SpeechRecognizer(Protocol):
    available: bool

    def start(
        self,
        lang: str,
        on_result: Callable[[str], None],
        on_error: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None:
        """启动一次非连续识别。"""

        ...

    def stop(self) -> None:
        ...


class SpeechSynthesizer(Protocol):
    available: bool

    def voices(self) -> Sequence[Voice]:
        ...

    def speak(self, text: str, voice: Optional[Voice], lang: str, rate: float, pitch: float) -> None:
        ...


class NullRecognizer:
    available = False

    def start(self, lang, on_result, on_error, on_end) -> None:
        warnings.warn("Speech recognition is not supported in this environment")
        on_end()

    def stop(self) -> None:
        pass


class NullSynthesizer:
    available = False

    def voices(self) -> Sequence[Voice]:
        return []

    def speak(self, text, voice, lang, rate, pitch) -> None:
        warnings.warn("Speech synthesis is not supported in this environment")


_MARKDOWN_CHARS = re.compile(r"[*_#`]")


def clean_for_speech(text: str) -> str:
    """去掉 markdown 符号，换行转为句号停顿。"""

    return _MARKDOWN_CHARS.sub("", text or "").replace("\n", ". ")


def pick_voice(voices: Sequence[Voice], preferred_names: List[str]) -> Optional[Voice]:
    for v in voices:
        if any(name in v.name for name in preferred_names):
            return v
    return None


class VoiceAdapter:
    """聊天页面的语音能力；语音输出默认关闭，由用户手动开启。"""

    def __init__(
        self,
        recognizer: Optional[SpeechRecognizer] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        cfg=settings,
    ):
        self._recognizer = recognizer or NullRecognizer()
        self._synthesizer = synthesizer or NullSynthesizer()
        self._settings = cfg
        self.output_enabled = False
        self._listening = False
        self._dispatch_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def is_listening(self) -> bool:
        return self._listening

    # ---- 语音转文字 ----

    def start_listening(self, on_transcript: Callable[[str], None]) -> bool:
        """开始单次识别；识别结果延迟 voice_dispatch_delay 秒后再回调。"""

        if not getattr(self._recognizer, "available", False):
            warnings.warn("Speech recognition not supported. Please use a browser or host with speech support.")
            logger.warning("Speech recognition unavailable")
            return False
        with self._lock:
            if self._listening:
                return True
            self._listening = True

        def on_result(transcript: str) -> None:
            self._schedule_dispatch(on_transcript, transcript)

        def on_error(error: str) -> None:
            logger.error(f"Speech recognition error: {error}")
            self._reset_listening()

        self._recognizer.start(self._settings.speech_lang, on_result, on_error, self._reset_listening)
        return True

    def stop_listening(self) -> None:
        self._recognizer.stop()
        with self._lock:
            timer, self._dispatch_timer = self._dispatch_timer, None
        if timer:
            timer.cancel()
        self._reset_listening()

    def _schedule_dispatch(self, on_transcript: Callable[[str], None], transcript: str) -> None:
        delay = self._settings.voice_dispatch_delay
        timer = threading.Timer(delay, on_transcript, args=(transcript,))
        timer.daemon = True
        with self._lock:
            if self._dispatch_timer:
                self._dispatch_timer.cancel()
            self._dispatch_timer = timer
        timer.start()

    def _reset_listening(self) -> None:
        with self._lock:
            self._listening = False

    # ---- 文字转语音 ----

    def speak(self, text: str) -> bool:
        """朗读一条助手回复；未开启输出或引擎不可用时返回 False。"""

        if not self.output_enabled or not (text or "").strip():
            return False
        if not getattr(self._synthesizer, "available", False):
            warnings.warn("Speech synthesis not supported in this environment")
            return False
        voice = pick_voice(self._synthesizer.voices(), list(self._settings.preferred_voice_names))
        self._synthesizer.speak(clean_for_speech(text), voice, self._settings.speech_lang, 1.0, 1.0)
        return True
