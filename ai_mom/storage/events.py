"""Best-effort event sinks for violation records.

The monitor loop never waits on a sink and never sees its failures: every
``record`` call swallows and logs whatever goes wrong.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

import requests

from ai_mom.model.models import EventRecord

logger = logging.getLogger(__name__)

HTTP_OK_MIN = 200
HTTP_OK_MAX = 300


class EventSink:
    """Base sink. ``record`` never raises."""

    name = "base"

    def record(self, event: EventRecord) -> None:
        try:
            self._write(event)
        except Exception as e:  # noqa: BLE001
            logger.warning("Event not saved (%s): %s", self.name, e)

    def _write(self, event: EventRecord) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the sink."""


class NullEventSink(EventSink):
    """シンク未設定時のダミー. 何もしない."""

    name = "null"

    def record(self, event: EventRecord) -> None:  # noqa: ARG002
        return


class HttpEventSink(EventSink):
    """POST each record as a JSON document to a collection endpoint."""

    name = "http"

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        """初期化

        Args:
            url: 書き込み先コレクションのURL
            token: Bearerトークン（任意）
            timeout: タイムアウト(秒)
            session: プロセス全体で共有する requests.Session

        """
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _write(self, event: EventRecord) -> None:
        response = self.session.post(self.url, json=event.to_dict(), timeout=self.timeout)
        status_code = int(getattr(response, "status_code", 0))
        if not HTTP_OK_MIN <= status_code < HTTP_OK_MAX:
            msg = f"sink answered HTTP {status_code}"
            raise RuntimeError(msg)

    def close(self) -> None:
        self.session.close()


class JsonlEventSink(EventSink):
    """ローカルファイルに1行1レコードで追記する."""

    name = "jsonl"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _write(self, event: EventRecord) -> None:
        line = json.dumps(event.to_dict(), ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")


def create_event_sink(raw_config: str | dict[str, Any] | None) -> EventSink:
    """永続化設定からシンクを生成する.

    ``raw_config`` is the JSON text of ``EVENT_SINK_CONFIG`` (or an already
    decoded dict), e.g. ``{"type": "http", "url": "...", "token": "..."}`` or
    ``{"type": "jsonl", "path": "./log/events.jsonl"}``.  An empty value gives
    a :class:`NullEventSink`; an invalid one logs a warning and does the same.
    """
    if not raw_config:
        return NullEventSink()

    try:
        config = json.loads(raw_config) if isinstance(raw_config, str) else raw_config
        if not isinstance(config, dict):
            msg = "sink config must be a JSON object"
            raise TypeError(msg)
        kind = config.get("type", "http")
        if kind == "http":
            sink: EventSink = HttpEventSink(
                url=config["url"],
                token=config.get("token"),
                timeout=float(config.get("timeout", 5.0)),
            )
        elif kind == "jsonl":
            sink = JsonlEventSink(config["path"])
        else:
            msg = f"unknown sink type {kind!r}"
            raise ValueError(msg)
    except (ValueError, TypeError, KeyError) as e:
        logger.warning("Event sink config invalid or missing. Events will not be saved: %s", e)
        return NullEventSink()

    logger.info("Event sink configured | type=%s", sink.name)
    return sink
