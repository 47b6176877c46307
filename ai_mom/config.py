"""Runtime configuration read from the environment.

Values can be placed in ``.env.local`` at the repository root; they are loaded
with python-dotenv before the environment is read.  Existing environment
variables win over the file.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ai_mom.api.services.gemini import DEFAULT_BASE_URL, DEFAULT_MODEL
from ai_mom.model.models import MonitoringMode

REPO_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE = REPO_ROOT / ".env.local"

DEFAULT_INTERVAL_SEC = 6.0
DEFAULT_JPEG_QUALITY = 60


@dataclass
class Settings:
    """アプリケーション設定."""

    api_key: str = ""
    model_name: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    mode: MonitoringMode = MonitoringMode.HOMEWORK
    interval_sec: float = DEFAULT_INTERVAL_SEC
    camera_index: int = 0
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    subject_id: str = "anon"
    log_file: str = "./log/ai_mom.log"
    event_sink_config: str = ""


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    value = float(raw)
    if value <= 0:
        msg = f"{key} must be positive, got {raw!r}"
        raise ValueError(msg)
    return value


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def load_local_env(env_file: Path = ENV_FILE) -> None:
    if env_file.exists():
        load_dotenv(dotenv_path=env_file, override=False)


def load_settings(*, env_file: Path | None = ENV_FILE) -> Settings:
    """環境変数から設定を読み込む.

    Args:
        env_file: 事前に読み込む .env ファイル. None なら読み込まない

    Raises:
        ValueError: 数値や列挙値が不正な場合

    """
    if env_file is not None:
        load_local_env(env_file)

    quality = _int_env("AI_MOM_JPEG_QUALITY", DEFAULT_JPEG_QUALITY)
    if not 1 <= quality <= 100:  # noqa: PLR2004
        msg = f"AI_MOM_JPEG_QUALITY must be within 1..100, got {quality}"
        raise ValueError(msg)

    return Settings(
        api_key=os.getenv("GEMINI_API_KEY", "").strip(),
        model_name=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
        base_url=(os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
        mode=MonitoringMode(os.getenv("AI_MOM_MODE") or MonitoringMode.HOMEWORK.value),
        interval_sec=_float_env("AI_MOM_INTERVAL_SEC", DEFAULT_INTERVAL_SEC),
        camera_index=_int_env("AI_MOM_CAMERA_INDEX", 0),
        jpeg_quality=quality,
        subject_id=os.getenv("AI_MOM_SUBJECT_ID") or "anon",
        log_file=os.getenv("AI_MOM_LOG_FILE") or "./log/ai_mom.log",
        event_sink_config=os.getenv("EVENT_SINK_CONFIG", ""),
    )
