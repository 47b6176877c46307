"""FastAPI app to control the AI Mom monitor and observe its status."""

from collections import deque
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ai_mom.api.services.gemini import GeminiClient, create_gemini_client
from ai_mom.config import Settings, load_settings
from ai_mom.model.errors import MissingCredential, SessionActive, SourceUnavailable
from ai_mom.model.models import MonitoringMode, MonitorStatus
from ai_mom.monitor.loop import MonitorLoop
from ai_mom.storage.events import create_event_sink
from ai_mom.ui.speech import AnnouncementChannel
from ai_mom.watchers.camera import FrameSampler, open_camera
from ai_mom.watchers.logger import logger, setup_file_logging

# FastAPIアプリケーションのインスタンスを作成
app = FastAPI(
    title="AI Mom",
    description="Webcam posture and manners monitor backed by a vision model",
)

# グローバルな状態管理
STATE: dict[str, Any] = {
    "settings": None,
    "monitor": None,
    "camera": None,
    "logs": deque(maxlen=100),  # ログを保存 (最大100件)
}

# --- ロギング ---


def log_message(message: str) -> None:
    """ロガーに出力し、ログキューにも追加する."""
    logger.info(message)
    STATE["logs"].append(message)


def _on_status(status: MonitorStatus) -> None:
    log_message(f"[{status.state.value}] {status.message}")


# --- Pydanticモデル定義 ---


class StartRequest(BaseModel):
    """監視開始リクエストのモデル."""

    mode: MonitoringMode = MonitoringMode.HOMEWORK
    api_key: str | None = None


# --- アプリケーションのライフサイクルイベント ---


def build_monitor(settings: Settings, client: GeminiClient) -> MonitorLoop:
    """設定から監視ループを組み立てる. カメラが無ければ未接続のまま作る."""
    sampler = FrameSampler(jpeg_quality=settings.jpeg_quality)
    try:
        camera = open_camera(settings.camera_index)
    except SourceUnavailable as e:
        logger.warning("Camera unavailable: %s", e)
    else:
        STATE["camera"] = camera
        sampler.attach(camera)

    monitor = MonitorLoop(
        sampler=sampler,
        client=client,
        announcer=AnnouncementChannel(),
        sink=create_event_sink(settings.event_sink_config),
        interval_sec=settings.interval_sec,
        subject_id=settings.subject_id,
    )
    monitor.subscribe(_on_status)
    return monitor


# Deprecated on_event usage is temporarily retained for simplicity.
@app.on_event("startup")  # pyright: ignore[reportDeprecated]
async def startup_event() -> None:
    """アプリケーション起動時に監視ループを初期化."""
    settings = load_settings()
    setup_file_logging(settings.log_file)
    STATE["settings"] = settings
    client = create_gemini_client(settings.base_url, settings.model_name)
    STATE["monitor"] = build_monitor(settings, client)
    # 疎通確認は起動時のログ用だけ. 監視ループからは呼ばない
    is_ready = client.is_available(settings.api_key)
    log_message(f"Gemini API available: {is_ready}")


@app.on_event("shutdown")  # pyright: ignore[reportDeprecated]
async def shutdown_event() -> None:
    """停止時に監視を止めてカメラを解放する."""
    monitor: MonitorLoop | None = STATE["monitor"]
    if monitor is not None:
        monitor.close()
        monitor.sink.close()
    camera = STATE["camera"]
    if camera is not None:
        camera.release()
        STATE["camera"] = None


def _get_monitor() -> MonitorLoop:
    monitor: MonitorLoop | None = STATE["monitor"]
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor not available")
    return monitor


# --- APIエンドポイント定義 ---


@app.post("/monitor/start")
async def start_monitoring(req: StartRequest) -> dict[str, Any]:
    """監視を開始する. APIキーは省略時に設定値を使う."""
    monitor = _get_monitor()
    settings: Settings | None = STATE["settings"]
    credential = req.api_key or (settings.api_key if settings else "")
    try:
        status = monitor.start(req.mode, credential)
    except MissingCredential as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SessionActive as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {"ok": True, "status": status.to_dict()}


@app.post("/monitor/stop")
async def stop_monitoring() -> dict[str, Any]:
    """監視を停止する（停止済みでも成功）."""
    status = _get_monitor().stop()
    return {"ok": True, "status": status.to_dict()}


@app.get("/status")
async def get_current_status() -> dict[str, Any]:
    """現在の監視状態を取得する."""
    return _get_monitor().status.to_dict()


@app.get("/api/monitoring_data")
async def get_monitoring_data() -> dict[str, Any]:
    """モニタリングUIに最新データを提供する."""
    monitor = _get_monitor()
    return {
        "status": monitor.status.to_dict(),
        "stats": monitor.stats(),
        "logs": list(STATE["logs"]),
    }
