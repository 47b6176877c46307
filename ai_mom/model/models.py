__all__ = [
    "EventRecord",
    "Frame",
    "MonitorState",
    "MonitorStatus",
    "MonitoringMode",
    "Verdict",
]


import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class MonitoringMode(str, Enum):
    """監視モード. プロンプトの切り替えに使う."""

    HOMEWORK = "homework"
    EATING = "eating"


class MonitorState(str, Enum):
    """Status values observed by the presentation layer."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    GOOD = "good"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Frame:
    """One encoded still image captured from the camera."""

    data: bytes
    mime_type: str = "image/jpeg"
    width: int = 0
    height: int = 0
    captured_at: float = field(default_factory=time.time)

    def as_base64(self) -> str:
        """インラインデータ用のbase64文字列を返す."""
        return base64.b64encode(self.data).decode("ascii")


class Verdict(BaseModel):
    """Result of one analysis cycle.

    The API answers with ``{"status": "good" | "bad", "message": "..."}``;
    ``status`` is exposed as :attr:`outcome`.  A ``bad`` verdict must carry a
    non-empty message, otherwise validation fails.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    outcome: Literal["good", "bad"] = Field(alias="status")
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def null_message_is_empty(cls, v: Any) -> Any:
        """message が null の場合は空文字として扱う."""
        return "" if v is None else v

    @model_validator(mode="after")
    def bad_requires_message(self) -> "Verdict":
        """bad判定にはメッセージが必須."""
        if self.outcome == "bad" and not self.message.strip():
            msg = "a bad verdict must carry a message"
            raise ValueError(msg)
        return self

    @property
    def is_bad(self) -> bool:
        return self.outcome == "bad"


@dataclass(frozen=True)
class MonitorStatus:
    """Immutable snapshot of the loop state.

    ``active`` distinguishes the waiting variant of ``idle`` (a session is
    running and the first cycle has not fired yet) from the stopped one.
    """

    state: MonitorState = MonitorState.IDLE
    message: str = ""
    active: bool = False
    mode: MonitoringMode | None = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "message": self.message,
            "active": self.active,
            "mode": self.mode.value if self.mode else None,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class EventRecord:
    """違反イベント. 書き込み専用でコアからは読み返さない."""

    mode: MonitoringMode
    message: str
    category: str = "violation"
    subject_id: str = "anon"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """シンクに送るドキュメント形式に変換."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "mode": self.mode.value,
            "message": self.message,
            "category": self.category,
            "subjectId": self.subject_id,
        }
