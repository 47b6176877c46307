__all__ = [
    "MalformedResponse",
    "MissingCredential",
    "MonitorError",
    "SessionActive",
    "SourceUnavailable",
    "TransportError",
]


class MonitorError(Exception):
    """監視サイクルで発生するエラーの基底クラス."""


class SourceUnavailable(MonitorError):
    """No active video stream is attached (or it produced no usable frame)."""


class MissingCredential(MonitorError):
    """APIキーが設定されていない."""


class TransportError(MonitorError):
    """The network call failed or the API answered with a non-success status."""


class MalformedResponse(MonitorError):
    """The API answer does not follow the verdict contract."""


class SessionActive(MonitorError):
    """監視セッションが既に動いている."""
