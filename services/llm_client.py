"""LLM clients - the external model behind the chatbot.

Both clients take the neutral context built by ChatService
(``[{"role": "system" | "user" | "assistant", "content": str}]``) and return
an LLMReply, raising ChatTimeout / UpstreamBlocked / UpstreamEmpty /
UpstreamError on failure.

Env vars:
  LLM_PROVIDER (openai | azure | gemini)
  OPENAI_API_KEY, OPENAI_API_BASE, OPENAI_API_VERSION, OPENAI_MODEL
  GOOGLE_GEMINI_API_KEY, GOOGLE_GEMINI_API_URL, GOOGLE_GEMINI_API_MODEL
"""
import logging
import os
from typing import Dict, List, NamedTuple, Optional

import httpx
from openai import APITimeoutError, AzureOpenAI, OpenAI, OpenAIError

from services.errors import ChatTimeout, UpstreamBlocked, UpstreamEmpty, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 45.0


class LLMReply(NamedTuple):
    text: str
    title: Optional[str] = None


class OpenAIChatClient:
    """Chat completions through the OpenAI SDK (plain OpenAI or Azure OpenAI)."""

    collapse_same_role = False

    def __init__(self, client, model: str, temperature: float = 0.6, max_tokens: int = 1024):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_env(cls, azure: bool = False, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> Optional["OpenAIChatClient"]:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            logger.warning("OPENAI_API_KEY not set. Chatbot will be unavailable.")
            return None
        model = os.getenv("OPENAI_MODEL") or "gpt-4o-mini"
        if azure:
            client = AzureOpenAI(
                api_key=api_key,
                api_version=os.getenv("OPENAI_API_VERSION") or "2024-02-15-preview",
                azure_endpoint=os.getenv("OPENAI_API_BASE"),
                timeout=timeout,
                max_retries=2,
            )
        else:
            client = OpenAI(api_key=api_key, base_url=os.getenv("OPENAI_API_BASE") or None,
                            timeout=timeout, max_retries=2)
        return cls(client, model)

    def generate(self, messages: List[Dict[str, str]]) -> LLMReply:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except APITimeoutError as e:
            raise ChatTimeout() from e
        except OpenAIError as e:
            logger.error(f"OpenAI call failed: {type(e).__name__}: {e}")
            raise UpstreamError() from e

        if not response.choices:
            raise UpstreamEmpty()
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise UpstreamBlocked()
        content = choice.message.content if choice.message else None
        if not isinstance(content, str) or not content.strip():
            raise UpstreamEmpty()
        return LLMReply(text=content)


class GeminiChatClient:
    """generateContent over REST.

    The API expects alternating user/model turns, so ChatService collapses
    consecutive same-role history entries for this client.
    """

    collapse_same_role = True
    SYSTEM_ACK = ("Understood. I will follow these instructions to provide contextually relevant and "
                  "helpful answers, paying close attention to pronoun references and the flow of conversation.")

    def __init__(self, api_url: str, model: str, api_key: str, http_client: Optional[httpx.Client] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.endpoint = f"{api_url.rstrip('/')}/{model}:generateContent"
        self.api_key = api_key
        self.http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_env(cls, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> Optional["GeminiChatClient"]:
        api_key = os.getenv("GOOGLE_GEMINI_API_KEY")
        api_url = os.getenv("GOOGLE_GEMINI_API_URL")
        model = os.getenv("GOOGLE_GEMINI_API_MODEL")
        if not (api_key and api_url and model):
            logger.warning(f"Missing Gemini config: key={bool(api_key)} url={bool(api_url)} model={bool(model)}")
            return None
        return cls(api_url, model, api_key, timeout=timeout)

    def to_contents(self, messages: List[Dict[str, str]]) -> List[Dict]:
        contents = []
        for msg in messages:
            text = msg["content"]
            if msg["role"] == "system":
                contents.append({"role": "user", "parts": [{"text": f"System Instruction: {text}"}]})
                contents.append({"role": "model", "parts": [{"text": self.SYSTEM_ACK}]})
                continue
            role = "model" if msg["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": text}]})
        return contents

    def generate(self, messages: List[Dict[str, str]]) -> LLMReply:
        payload = {"contents": self.to_contents(messages)}
        try:
            resp = self.http.post(self.endpoint, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as e:
            raise ChatTimeout() from e
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise UpstreamError() from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            logger.warning(f"Gemini blocked the prompt: {feedback.get('blockReason')}")
            raise UpstreamBlocked()
        if resp.status_code >= 400:
            message = (data.get("error") or {}).get("message") or f"{resp.status_code} {resp.reason_phrase}"
            logger.error(f"Gemini API error: {message}")
            raise UpstreamError()

        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = parts[0].get("text") if parts else None
        if not isinstance(text, str):
            if candidate.get("finishReason") == "SAFETY":
                raise UpstreamBlocked()
            logger.warning(f"Unexpected Gemini response structure: {data}")
            raise UpstreamEmpty()
        return LLMReply(text=text)


def build_llm_client(timeout: float = DEFAULT_TIMEOUT_SECONDS):
    provider = (os.getenv("LLM_PROVIDER") or "openai").lower()
    if provider == "gemini":
        return GeminiChatClient.from_env(timeout=timeout)
    return OpenAIChatClient.from_env(azure=provider == "azure", timeout=timeout)
