from concurrent.futures import Executor, Future
from unittest.mock import Mock

import numpy as np
import pytest

from ai_mom.model.models import Frame, Verdict
from ai_mom.monitor.loop import MonitorLoop


class ImmediateExecutor(Executor):
    """submit() した関数をその場で実行する Executor."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # noqa: BLE001
            future.set_exception(e)
        return future


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def sample_frame():
    """テスト用のフレーム"""
    return Frame(data=b"\xff\xd8fake-jpeg\xff\xd9", width=640, height=480)


@pytest.fixture
def bgr_image():
    """640x480 のダミー画像 (BGR)"""
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    image[:, :, 2] = 200
    return image


@pytest.fixture
def mock_sampler(sample_frame):
    mock = Mock()
    mock.capture = Mock(return_value=sample_frame)
    return mock


@pytest.fixture
def mock_client():
    """推論クライアントのモック（デフォルトは good 判定）"""
    mock = Mock()
    mock.analyze = Mock(return_value=Verdict(status="good", message=""))
    return mock


@pytest.fixture
def mock_announcer():
    mock = Mock()
    mock.announce = Mock(return_value=True)
    return mock


@pytest.fixture
def mock_sink():
    mock = Mock()
    mock.record = Mock()
    return mock


@pytest.fixture
def monitor(mock_sampler, mock_client, mock_announcer, mock_sink, immediate_executor):
    """テスト用の監視ループ. タイマーは実質発火しない長さにする"""
    loop = MonitorLoop(
        sampler=mock_sampler,
        client=mock_client,
        announcer=mock_announcer,
        sink=mock_sink,
        interval_sec=3600,
        subject_id="kid-1",
        executor=immediate_executor,
    )
    yield loop
    loop.close()
