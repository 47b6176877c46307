"""Webcam frame sampling built on OpenCV.

The sampler never opens or releases the device itself: it is handed an already
running ``cv2.VideoCapture`` (or anything with ``isOpened()``/``read()``) and
only grabs one still per call.
"""

import logging
import time
from typing import Any, Protocol

import cv2

from ai_mom.model.errors import SourceUnavailable
from ai_mom.model.models import Frame

logger = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY = 60
DEFAULT_MAX_EDGE = 1024


class VideoSource(Protocol):
    """cv2.VideoCapture 互換のインターフェース."""

    def isOpened(self) -> bool: ...  # noqa: N802

    def read(self) -> tuple[bool, Any]: ...


class FrameSampler:
    """カメラから静止画を1枚取得してJPEGに変換するクラス."""

    def __init__(
        self,
        source: VideoSource | None = None,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        max_edge: int | None = DEFAULT_MAX_EDGE,
    ) -> None:
        """初期化

        Args:
            source: 起動済みの映像ソース. 後から attach() でも設定できる
            jpeg_quality: JPEG品質 (1-100). 送信サイズを抑えるため低めにする
            max_edge: 長辺の最大ピクセル数. None なら縮小しない

        """
        self.source = source
        self.jpeg_quality = jpeg_quality
        self.max_edge = max_edge
        self.last_capture_time: float = 0.0

    def attach(self, source: VideoSource | None) -> None:
        self.source = source

    def capture(self) -> Frame:
        """Grab the current frame and encode it.

        Raises:
            SourceUnavailable: no opened source, a failed read, a zero-sized
                frame, or an encoder failure.

        """
        source = self.source
        if source is None or not source.isOpened():
            msg = "no active video stream"
            raise SourceUnavailable(msg)

        ok, image = source.read()
        if not ok or image is None:
            msg = "video source returned no frame"
            raise SourceUnavailable(msg)

        height, width = image.shape[:2]
        if width <= 0 or height <= 0:
            msg = f"degenerate frame size {width}x{height}"
            raise SourceUnavailable(msg)

        image, width, height = self._downscale(image, width, height)

        encoded, buffer = cv2.imencode(
            ".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
        )
        if not encoded:
            msg = "JPEG encoding failed"
            raise SourceUnavailable(msg)

        self.last_capture_time = time.time()
        data = buffer.tobytes()
        logger.debug("Frame captured | size=%sx%s bytes=%s", width, height, len(data))
        return Frame(
            data=data,
            mime_type="image/jpeg",
            width=width,
            height=height,
            captured_at=self.last_capture_time,
        )

    def _downscale(self, image: Any, width: int, height: int) -> tuple[Any, int, int]:
        """長辺が max_edge を超える場合だけ縮小する."""
        if not self.max_edge or max(width, height) <= self.max_edge:
            return image, width, height
        scale = self.max_edge / max(width, height)
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        resized = cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)
        return resized, new_size[0], new_size[1]


def open_camera(
    camera_index: int = 0,
    width: int = 640,
    height: int = 480,
) -> "cv2.VideoCapture":
    """Open a local webcam for the CLI and the API server.

    Raises:
        SourceUnavailable: カメラを開けなかった場合

    """
    cap = cv2.VideoCapture(camera_index)
    if not cap.isOpened():
        cap.release()
        msg = f"camera {camera_index} could not be opened"
        raise SourceUnavailable(msg)

    cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
    logger.info("Camera opened | index=%s size=%sx%s", camera_index, width, height)
    return cap
