import base64
import json
from unittest import mock
from unittest.mock import Mock, patch

import httpx
import pytest
from httpx import TimeoutException
from openai._base_client import SyncHttpxClientWrapper

from verifdevis.quote_analysis.llm.client import (
    LLMApiError,
    LLMClient,
    _build_image_content,
    _build_pdf_document_payload,
    _extract_markdown_from_ocr_response,
)

MESSAGES = [
    {"role": "system", "content": "Tu es un expert en travaux de bâtiment."},
    {"role": "user", "content": "Réponds simplement 'OK'."},
]


def chat_completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "openweight-medium",
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}},
        ],
    }


def make_client(handler) -> LLMClient:
    httpx_client = SyncHttpxClientWrapper(transport=httpx.MockTransport(handler=handler))
    return LLMClient(http_client=httpx_client)


# --- payloads ---


def test_build_pdf_document_payload():
    content = b"%PDF-1.4 fake"
    out = _build_pdf_document_payload(content)
    assert out["type"] == "document_url"
    assert base64.b64decode(out["document_url"].split(",", 1)[1]) == content


def test_build_image_content():
    out = _build_image_content(b"\x89PNG", "image/png")
    assert out["type"] == "image_url"
    assert out["image_url"]["url"].startswith("data:image/png;base64,")


def test_extract_markdown_from_ocr_response():
    assert _extract_markdown_from_ocr_response({}) == ""
    out = _extract_markdown_from_ocr_response({"pages": [{"markdown": "A"}, {}]})
    assert "[[PAGE 1 / 2]]\nA\n[[FIN PAGE 1 / 2]]" in out
    assert "[[PAGE 2 / 2]]\n\n[[FIN PAGE 2 / 2]]" in out


# --- _api_call ---


def test_api_call_429_retry_then_raise():
    client = LLMClient()
    func_api = Mock(side_effect=LLMApiError("Rate limited", code="HTTP_429", details=""))
    with (
        patch("verifdevis.quote_analysis.llm.client.time.sleep", autospec=True) as m_sleep,
        patch("verifdevis.quote_analysis.llm.client.random.random", return_value=0.5),
    ):
        with pytest.raises(LLMApiError) as exc_info:
            client._api_call(func_api, max_retries=2, retry_delay=5, retry_short_delay=2)
    assert exc_info.value.code == "HTTP_429"
    assert func_api.call_count == 3
    m_sleep.assert_has_calls([mock.call(5 * 1.05 * 1), mock.call(5 * 1.05 * 2)])


def test_api_call_4xx_no_retry():
    client = LLMClient()
    func_api = Mock(side_effect=LLMApiError("Bad request", code="HTTP_400", details=""))
    with patch("verifdevis.quote_analysis.llm.client.time.sleep", autospec=True) as m_sleep:
        with pytest.raises(LLMApiError):
            client._api_call(func_api, max_retries=3, retry_delay=5, retry_short_delay=2)
    assert func_api.call_count == 1
    m_sleep.assert_not_called()


def test_api_call_success_after_network_error():
    client = LLMClient()
    func_api = Mock(side_effect=[LLMApiError("Timeout", code="ERROR_APITimeoutError", details=""), "OK"])
    with (
        patch("verifdevis.quote_analysis.llm.client.time.sleep", autospec=True) as m_sleep,
        patch("verifdevis.quote_analysis.llm.client.random.random", return_value=0.5),
    ):
        assert client._api_call(func_api, max_retries=1, retry_delay=5, retry_short_delay=2) == "OK"
    m_sleep.assert_called_once_with(2 * 1.05)


# --- ask_llm ---


def test_ask_llm_returns_content():
    handler = Mock(side_effect=lambda request: httpx.Response(200, json=chat_completion(" OK ")))
    client = make_client(handler)

    assert client.ask_llm(MESSAGES, model="openweight-medium") == "OK"

    request = handler.call_args.args[0]
    body = json.loads(request.content)
    assert body["model"] == "openweight-medium"
    assert body["messages"] == MESSAGES


def test_ask_llm_parses_json_response_format():
    handler = Mock(side_effect=lambda request: httpx.Response(200, json=chat_completion('{"siret": "123"}')))
    client = make_client(handler)
    response_format = {"type": "json_schema", "json_schema": {"name": "devis", "schema": {}, "strict": True}}

    assert client.ask_llm(MESSAGES, model="m", response_format=response_format) == {"siret": "123"}
    assert client.ask_llm(MESSAGES, model="m", response_format=response_format, parse_json=False) == '{"siret": "123"}'


@pytest.mark.parametrize(
    "status_code,retry_delay",
    [(429, 5), (503, 2), (500, 2)],
)
def test_ask_llm_api_error(status_code, retry_delay):
    error_body = {"detail": "Model is too busy."}
    handler = Mock(side_effect=lambda request: httpx.Response(status_code=status_code, json=error_body))
    client = make_client(handler)

    with (
        patch("time.sleep", autospec=True) as m_sleep,
        patch("random.random", autospec=True, return_value=0.5),
    ):
        with pytest.raises(LLMApiError) as exc_info:
            client.ask_llm(MESSAGES, model="openweight-medium", max_retries=2)

    assert handler.call_count == 3
    m_sleep.assert_has_calls([mock.call(retry_delay * 1.05), mock.call(retry_delay * 1.05 * 2)])
    assert exc_info.value.code == f"HTTP_{status_code}"
    assert exc_info.value.message == f"Api Error: HTTP_{status_code} - {error_body}"


def test_ask_llm_timeout_error():
    handler = Mock(side_effect=TimeoutException("Request timeout"))
    client = make_client(handler)

    with patch("time.sleep", autospec=True), patch("random.random", autospec=True, return_value=0.5):
        with pytest.raises(LLMApiError) as exc_info:
            client.ask_llm(MESSAGES, model="openweight-medium", max_retries=1)

    assert handler.call_count == 2
    assert exc_info.value.code == "ERROR_APITimeoutError"


def test_ask_vision_sends_image():
    handler = Mock(side_effect=lambda request: httpx.Response(200, json=chat_completion("Texte du devis")))
    client = make_client(handler)

    assert client.ask_vision(b"\xff\xd8\xff", "image/jpeg", "Transcris", model="vision") == "Texte du devis"

    body = json.loads(handler.call_args.args[0].content)
    content = body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "Transcris"}
    assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


# --- ocr_pdf ---

PDF_CONTENT = b"%PDF-1.4 fake content"


def test_ocr_pdf_success():
    handler = Mock(return_value=httpx.Response(200, json={"pages": [{"markdown": "Devis"}]}))
    client = LLMClient(ocr_http_client=httpx.Client(transport=httpx.MockTransport(handler=handler)))

    assert client.ocr_pdf(PDF_CONTENT, model="ocr") == "[[PAGE 1 / 1]]\nDevis\n[[FIN PAGE 1 / 1]]"

    request = handler.call_args.args[0]
    assert str(request.url) == "https://llm.test.local/v1/ocr"
    assert request.headers["Authorization"] == "Bearer test-key"
    assert json.loads(request.content)["model"] == "ocr"


def test_ocr_pdf_retry_then_error():
    handler = Mock(return_value=httpx.Response(status_code=503, text="busy"))
    client = LLMClient(ocr_http_client=httpx.Client(transport=httpx.MockTransport(handler=handler)))

    with patch("time.sleep", autospec=True) as m_sleep, patch("random.random", autospec=True, return_value=0.5):
        with pytest.raises(LLMApiError) as exc_info:
            client.ocr_pdf(PDF_CONTENT, max_retries=2)

    assert exc_info.value.code == "HTTP_503"
    assert handler.call_count == 3
    assert m_sleep.call_count == 2


def test_ocr_pdf_network_error():
    handler = Mock(side_effect=httpx.ConnectError("Connection refused"))
    client = LLMClient(ocr_http_client=httpx.Client(transport=httpx.MockTransport(handler=handler)))

    with patch("time.sleep", autospec=True), patch("random.random", autospec=True, return_value=0.5):
        with pytest.raises(LLMApiError) as exc_info:
            client.ocr_pdf(PDF_CONTENT, max_retries=0)

    assert exc_info.value.code == "ERROR_ConnectError"
    assert handler.call_count == 1
