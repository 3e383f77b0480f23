import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError

from services.errors import ChatTimeout, UpstreamBlocked, UpstreamEmpty, UpstreamError
from services.llm_client import GeminiChatClient, OpenAIChatClient

MESSAGES = [
    {"role": "system", "content": "Be helpful."},
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello!"},
    {"role": "user", "content": "How are you?"},
]


# --- OpenAI ---

class FakeCompletions:
    def __init__(self, result):
        self.result = result
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def openai_client(result):
    completions = FakeCompletions(result)
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatClient(sdk, "gpt-4o-mini"), completions


def completion(content, finish_reason="stop"):
    choice = SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice])


def test_openai_reply():
    client, completions = openai_client(completion("Doing well."))
    assert client.generate(MESSAGES).text == "Doing well."
    assert completions.kwargs["messages"] == MESSAGES
    assert completions.kwargs["model"] == "gpt-4o-mini"


def test_openai_content_filter_is_blocked():
    client, _ = openai_client(completion(None, finish_reason="content_filter"))
    with pytest.raises(UpstreamBlocked):
        client.generate(MESSAGES)


def test_openai_empty_reply():
    client, _ = openai_client(SimpleNamespace(choices=[]))
    with pytest.raises(UpstreamEmpty):
        client.generate(MESSAGES)
    client, _ = openai_client(completion("   "))
    with pytest.raises(UpstreamEmpty):
        client.generate(MESSAGES)


def test_openai_timeout():
    client, _ = openai_client(APITimeoutError(request=httpx.Request("POST", "https://api.test/v1")))
    with pytest.raises(ChatTimeout):
        client.generate(MESSAGES)


def test_openai_from_env_without_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert OpenAIChatClient.from_env() is None


# --- Gemini ---

def gemini_client(handler):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return GeminiChatClient("https://gemini.test/v1beta/models/", "gemini-pro", "k-123", http_client=http)


def test_gemini_request_shape_and_reply():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Great!"}]}}]})

    assert gemini_client(handler).generate(MESSAGES).text == "Great!"
    assert seen["url"].path == "/v1beta/models/gemini-pro:generateContent"
    assert seen["url"].params["key"] == "k-123"
    contents = seen["body"]["contents"]
    assert [c["role"] for c in contents] == ["user", "model", "user", "model", "user"]
    assert contents[0]["parts"][0]["text"] == "System Instruction: Be helpful."
    assert contents[1]["parts"][0]["text"] == GeminiChatClient.SYSTEM_ACK


def test_gemini_block_reason():
    client = gemini_client(lambda r: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
    with pytest.raises(UpstreamBlocked):
        client.generate(MESSAGES)


def test_gemini_safety_finish_without_text():
    client = gemini_client(lambda r: httpx.Response(200, json={"candidates": [{"finishReason": "SAFETY"}]}))
    with pytest.raises(UpstreamBlocked):
        client.generate(MESSAGES)


def test_gemini_unexpected_structure():
    client = gemini_client(lambda r: httpx.Response(200, json={"candidates": []}))
    with pytest.raises(UpstreamEmpty):
        client.generate(MESSAGES)


def test_gemini_http_error():
    client = gemini_client(lambda r: httpx.Response(500, json={"error": {"message": "boom"}}))
    with pytest.raises(UpstreamError):
        client.generate(MESSAGES)


def test_gemini_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ChatTimeout):
        gemini_client(handler).generate(MESSAGES)


def test_gemini_from_env_incomplete(monkeypatch):
    monkeypatch.delenv("GOOGLE_GEMINI_API_KEY", raising=False)
    assert GeminiChatClient.from_env() is None


def test_gemini_non_object_body():
    client = gemini_client(lambda r: httpx.Response(200, json=[{"candidates": []}]))
    with pytest.raises(UpstreamEmpty):
        client.generate(MESSAGES)
