import json
import logging
from typing import Any

import requests
from pydantic import ValidationError

from ai_mom.model.errors import MalformedResponse, MissingCredential, TransportError
from ai_mom.model.models import Frame, MonitoringMode, Verdict

logger = logging.getLogger(__name__)

HTTP_OK = 200
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.0-flash"

_RESPONSE_CONTRACT = """
If failures found: return status "bad".
{ok_rule}

Return ONLY one JSON object with these exact keys:
{{ "status": "good" | "bad", "message": "Short 5-word strict motherly command." }}
""".strip()

PROMPTS: dict[MonitoringMode, str] = {
    MonitoringMode.HOMEWORK: f"""
You are 'AI Mom', a strict but caring mother monitoring homework.
Analyze the image for:
1. Slouching/Leaning (bad for back).
2. Distraction (looking away from books/screen).
3. Sleeping or Playing with toys.

{_RESPONSE_CONTRACT.format(ok_rule='If focused: return status "good".')}
""".strip(),
    MonitoringMode.EATING: f"""
You are 'AI Mom', a strict but caring mother monitoring her child eating.
Analyze the image for:
1. Not holding a utensil (spoon/fork/chopsticks) properly.
2. Looking away from food/distracted.
3. Playing or Talking instead of eating.

{_RESPONSE_CONTRACT.format(ok_rule='If eating politely: return status "good".')}
""".strip(),
}


class GeminiClient:
    """Gemini generateContent API クライアント (画像 + 指示 → Verdict)."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model_name: str = DEFAULT_MODEL,
        timeout: float = 20.0,
        session: requests.Session | None = None,
    ) -> None:
        """初期化

        Args:
            base_url: APIのベースURL
            model_name: 使用するモデル名（例: gemini-2.0-flash）
            timeout: APIタイムアウト(秒)
            session: 使い回す requests.Session. None なら requests を直接使う

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.session = session
        self.generate_url = (
            f"{self.base_url}/v1beta/models/{self.model_name}:generateContent"
        )

    def _http(self) -> Any:
        return self.session if self.session is not None else requests

    def is_available(self, credential: str) -> bool:
        """モデル一覧エンドポイントでAPIの疎通を確認する."""
        if not credential:
            return False
        try:
            response = self._http().get(
                f"{self.base_url}/v1beta/models",
                params={"key": credential},
                timeout=5,
            )
        except requests.RequestException:
            return False
        else:
            status_code: int = response.status_code
            return status_code == HTTP_OK

    def build_payload(self, frame: Frame, mode: MonitoringMode) -> dict[str, Any]:
        """Request body: the instruction text followed by the inline image."""
        return {
            "contents": [
                {
                    "parts": [
                        {"text": PROMPTS[mode]},
                        {
                            "inline_data": {
                                "mime_type": frame.mime_type,
                                "data": frame.as_base64(),
                            },
                        },
                    ],
                },
            ],
            "generationConfig": {"response_mime_type": "application/json"},
        }

    def analyze(
        self,
        frame: Frame,
        mode: MonitoringMode,
        credential: str,
    ) -> Verdict:
        """フレームを解析して Verdict を返す.

        Args:
            frame: 送信する画像
            mode: 監視モード（プロンプト選択）
            credential: APIキー

        Raises:
            MissingCredential: APIキーが空（通信前にチェック）
            TransportError: 通信失敗または200以外のステータス
            MalformedResponse: 応答が契約どおりのJSONでない

        """
        if not credential:
            msg = "Gemini API key is not configured"
            raise MissingCredential(msg)

        payload = self.build_payload(frame, mode)
        try:
            response = self._http().post(
                self.generate_url,
                params={"key": credential},
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"inference request failed: {e.__class__.__name__}"
            raise TransportError(msg) from e

        if response.status_code != HTTP_OK:
            msg = f"inference API returned HTTP {response.status_code}"
            raise TransportError(msg)

        return self.parse_response(response)

    @staticmethod
    def parse_response(response: requests.Response) -> Verdict:
        """Extract ``candidates[0].content.parts[0].text`` and validate it."""
        try:
            data = response.json()
        except ValueError as e:
            msg = "response body is not JSON"
            raise MalformedResponse(msg) from e

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            msg = "response has no candidate text"
            raise MalformedResponse(msg) from e

        if not isinstance(text, str):
            msg = "candidate text is not a string"
            raise MalformedResponse(msg)

        try:
            verdict = Verdict.model_validate(json.loads(text))
        except json.JSONDecodeError as e:
            msg = "candidate text is not JSON"
            raise MalformedResponse(msg) from e
        except ValidationError as e:
            msg = f"verdict does not match the contract: {e.error_count()} error(s)"
            raise MalformedResponse(msg) from e

        logger.debug("Verdict parsed | outcome=%s", verdict.outcome)
        return verdict


# 便利関数
def create_gemini_client(
    base_url: str | None = None,
    model_name: str | None = None,
) -> GeminiClient:
    """Geminiクライアントのファクトリ関数.

    値は load_settings() で読み込んだ Settings から渡す. 省略時は既定値.
    """
    return GeminiClient(
        base_url=base_url or DEFAULT_BASE_URL,
        model_name=model_name or DEFAULT_MODEL,
    )
