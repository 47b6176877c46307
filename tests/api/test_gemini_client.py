import base64
import json
from unittest.mock import Mock, patch

import pytest
import requests

from ai_mom.api.services.gemini import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    PROMPTS,
    GeminiClient,
    create_gemini_client,
)
from ai_mom.config import load_settings
from ai_mom.model.errors import MalformedResponse, MissingCredential, TransportError
from ai_mom.model.models import MonitoringMode


def _api_response(text, status_code=200):
    """Gemini の応答を模したレスポンス"""
    response = Mock()
    response.status_code = status_code
    response.json = Mock(
        return_value={"candidates": [{"content": {"parts": [{"text": text}]}}]}
    )
    return response


class TestGeminiClient:
    """Geminiクライアントのテスト"""

    @pytest.fixture
    def client(self):
        return GeminiClient(
            base_url="https://example.test/",
            model_name="gemini-2.0-flash",
        )

    def test_initialization(self, client):
        assert client.base_url == "https://example.test"
        assert client.timeout == 20.0
        assert client.generate_url == (
            "https://example.test/v1beta/models/gemini-2.0-flash:generateContent"
        )

    def test_prompts_differ_but_share_contract(self):
        homework = PROMPTS[MonitoringMode.HOMEWORK]
        eating = PROMPTS[MonitoringMode.EATING]

        assert homework != eating
        assert "Slouching" in homework
        assert "utensil" in eating
        for prompt in (homework, eating):
            assert '"status": "good" | "bad"' in prompt
            assert '"message"' in prompt

    def test_build_payload(self, client, sample_frame):
        payload = client.build_payload(sample_frame, MonitoringMode.EATING)

        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": PROMPTS[MonitoringMode.EATING]}
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert base64.b64decode(parts[1]["inline_data"]["data"]) == sample_frame.data
        assert payload["generationConfig"] == {"response_mime_type": "application/json"}

    def test_analyze_bad_verdict(self, client, sample_frame):
        text = json.dumps({"status": "bad", "message": "Sit up straight"})
        with patch("requests.post", return_value=_api_response(text)) as mock_post:
            verdict = client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

        assert verdict.outcome == "bad"
        assert verdict.message == "Sit up straight"
        assert verdict.is_bad is True
        _, kwargs = mock_post.call_args
        assert mock_post.call_args.args[0] == client.generate_url
        assert kwargs["params"] == {"key": "secret"}
        assert kwargs["timeout"] == 20.0
        assert kwargs["json"]["contents"][0]["parts"][0]["text"] == (
            PROMPTS[MonitoringMode.HOMEWORK]
        )

    def test_analyze_good_verdict_without_message(self, client, sample_frame):
        with patch("requests.post", return_value=_api_response('{"status": "good"}')):
            verdict = client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

        assert verdict.outcome == "good"
        assert verdict.message == ""

    def test_analyze_good_verdict_with_null_message(self, client, sample_frame):
        """message が null の good 判定はエラーにしない"""
        text = '{"status": "good", "message": null}'
        with patch("requests.post", return_value=_api_response(text)):
            verdict = client.analyze(sample_frame, MonitoringMode.EATING, "secret")

        assert verdict.outcome == "good"
        assert verdict.message == ""

    @pytest.mark.parametrize("credential", ["", None])
    def test_missing_credential_checked_before_network(
        self, client, sample_frame, credential
    ):
        with patch("requests.post") as mock_post:
            with pytest.raises(MissingCredential):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, credential)
            mock_post.assert_not_called()

    def test_network_failure(self, client, sample_frame):
        with patch("requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(TransportError):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

    def test_timeout(self, client, sample_frame):
        with patch("requests.post", side_effect=requests.Timeout()):
            with pytest.raises(TransportError):
                client.analyze(sample_frame, MonitoringMode.EATING, "secret")

    @pytest.mark.parametrize("status_code", [400, 403, 429, 500])
    def test_non_success_status(self, client, sample_frame, status_code):
        response = _api_response('{"status": "good"}', status_code=status_code)
        with patch("requests.post", return_value=response):
            with pytest.raises(TransportError, match=str(status_code)):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

    @pytest.mark.parametrize(
        "text",
        [
            "Sit up straight!",  # JSONではない
            '{"status": "maybe", "message": "hmm"}',  # 未知のstatus
            '{"status": "bad", "message": ""}',  # bad なのにメッセージなし
            '{"status": "bad"}',
            '{"status": "bad", "message": null}',
            '{"message": "no status"}',
            '["good"]',
        ],
    )
    def test_malformed_candidate_text(self, client, sample_frame, text):
        with patch("requests.post", return_value=_api_response(text)):
            with pytest.raises(MalformedResponse):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"candidates": []},
            {"candidates": [{"content": {"parts": []}}]},
            {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
        ],
    )
    def test_missing_candidate_text(self, client, sample_frame, body):
        response = Mock(status_code=200)
        response.json = Mock(return_value=body)
        with patch("requests.post", return_value=response):
            with pytest.raises(MalformedResponse):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

    def test_body_not_json(self, client, sample_frame):
        response = Mock(status_code=200)
        response.json = Mock(side_effect=ValueError("Expecting value"))
        with patch("requests.post", return_value=response):
            with pytest.raises(MalformedResponse):
                client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")

    def test_uses_injected_session(self, sample_frame):
        session = Mock()
        session.post = Mock(return_value=_api_response('{"status": "good"}'))
        client = GeminiClient(session=session)

        with patch("requests.post") as mock_post:
            client.analyze(sample_frame, MonitoringMode.HOMEWORK, "secret")
            mock_post.assert_not_called()
        session.post.assert_called_once()


class TestAvailability:
    """疎通確認のテスト"""

    def test_available(self):
        client = GeminiClient(base_url="https://example.test")
        with patch("requests.get", return_value=Mock(status_code=200)) as mock_get:
            assert client.is_available("secret") is True
        mock_get.assert_called_once_with(
            "https://example.test/v1beta/models",
            params={"key": "secret"},
            timeout=5,
        )

    def test_unavailable_on_error(self):
        client = GeminiClient()
        with patch("requests.get", side_effect=requests.ConnectionError()):
            assert client.is_available("secret") is False

    def test_unavailable_without_credential(self):
        with patch("requests.get") as mock_get:
            assert GeminiClient().is_available("") is False
        mock_get.assert_not_called()


def test_create_gemini_client_from_settings():
    client = create_gemini_client("https://proxy.test", "gemini-1.5-flash")

    assert client.base_url == "https://proxy.test"
    assert client.model_name == "gemini-1.5-flash"


def test_create_gemini_client_ignores_environment(monkeypatch):
    """環境変数は load_settings() だけが読む"""
    monkeypatch.setenv("GEMINI_BASE_URL", "https://proxy.test")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-1.5-flash")

    client = create_gemini_client()

    assert client.base_url == DEFAULT_BASE_URL
    assert client.model_name == DEFAULT_MODEL


def test_settings_share_client_defaults(monkeypatch):
    for key in ("GEMINI_BASE_URL", "GEMINI_MODEL"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)

    settings = load_settings(env_file=None)

    assert settings.base_url == DEFAULT_BASE_URL
    assert settings.model_name == DEFAULT_MODEL
