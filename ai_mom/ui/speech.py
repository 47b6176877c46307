import logging
import re
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100  # 読み上げ履歴の最大件数

# 女性(お母さん)らしい声の名前に含まれやすい文字列
PREFERRED_VOICE_HINTS = ("female", "samantha", "zira", "google us english")
_MALE_RE = re.compile(r"\bmale\b", re.IGNORECASE)


@dataclass
class SpeechConfig:
    """Fixed presentation parameters for the voice."""

    rate: int = 170
    volume: float = 1.0
    prefer_female_voice: bool = True


class SpeechDevice(Protocol):
    """Blocking speech backend: returns once the utterance has finished."""

    def speak(self, text: str) -> None: ...


def select_voice(voices: Iterable[Any]) -> Any | None:
    """Pick a voice that sounds female/motherly, or None for the default.

    Works on anything with a ``name`` attribute (pyttsx3 voices); a ``gender``
    attribute is honoured when the platform reports one.
    """
    for voice in voices:
        name = str(getattr(voice, "name", "") or "")
        gender = str(getattr(voice, "gender", "") or "").lower()
        is_male = gender.endswith("male") and "female" not in gender
        if is_male or _MALE_RE.search(name):
            continue
        lowered = name.lower()
        if "female" in gender or any(hint in lowered for hint in PREFERRED_VOICE_HINTS):
            return voice
    return None


class Pyttsx3Device:
    """pyttsx3 を使う音声デバイス."""

    def __init__(self, config: SpeechConfig | None = None) -> None:
        self.config = config or SpeechConfig()

    def speak(self, text: str) -> None:
        import pyttsx3  # noqa: PLC0415

        # スレッドごとにエンジンを作る
        engine = pyttsx3.init()
        try:
            engine.setProperty("rate", self.config.rate)
            engine.setProperty("volume", self.config.volume)
            if self.config.prefer_female_voice:
                voice = select_voice(engine.getProperty("voices") or [])
                if voice is not None:
                    engine.setProperty("voice", voice.id)
            engine.say(text)
            engine.runAndWait()
        finally:
            engine.stop()


class AnnouncementChannel:
    """Speaks one message at a time.

    ``announce`` hands the text to the device on a background thread.  While
    an utterance is in progress further calls are dropped: nothing is queued,
    interrupted or overlapped.
    """

    def __init__(self, device: SpeechDevice | None = None) -> None:
        self.device = device if device is not None else Pyttsx3Device()
        self._lock = threading.Lock()
        self._speaking = False
        self._history: deque[str] = deque(maxlen=HISTORY_LIMIT)

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    def announce(self, text: str) -> bool:
        """読み上げを開始する.

        Returns:
            bool: 読み上げを開始した場合True、発話中や空文字の場合False

        """
        text = " ".join((text or "").split())
        if not text:
            return False

        with self._lock:
            if self._speaking:
                logger.info("Announcement dropped (already speaking) | text=%s", text)
                return False
            self._speaking = True

        self._history.append(text)
        worker = threading.Thread(
            target=self._run,
            args=(text,),
            name="ai-mom-speech",
            daemon=True,
        )
        worker.start()
        return True

    def _run(self, text: str) -> None:
        try:
            self.device.speak(text)
        except Exception as e:  # noqa: BLE001
            logger.warning("Speech failed: %s", e)
        finally:
            with self._lock:
                self._speaking = False

    def get_announcement_history(self) -> list[str]:
        """読み上げた文章の履歴を返す."""
        return list(self._history)
