"""
LLM Gateway: text-generation collaborator.

Provider-agnostic router with:
    - Multi-provider support (Anthropic Claude, OpenAI, Gemini, local stub)
    - Auto-retry with exponential backoff
    - Usage logging (tokens, latency, provider) through the standard logger

Providers are registered only when their API key is present. The model
``local-stub`` always resolves to the deterministic local stub. Any other
model whose provider is missing raises ``UpstreamUnavailableError`` unless
the gateway was built with ``allow_stub_fallback=True`` (development and
testing configs), so stub output is never passed off as provider output.
SDK clients are built with ``timeout_seconds`` so a hung call releases its
worker thread.

Usage:
    from grievance_engine.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "..."}], purpose="discipline_extraction")
    text = result["content"]
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod

from grievance_engine.core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


def _split_system(messages: list) -> tuple[str, list]:
    system_parts = []
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
        else:
            chat_messages.append(m)
    return "\n\n".join(system_parts), chat_messages


def _timeout_kwargs(timeout_seconds: float | None) -> dict:
    # unset: SDK default applies
    return {"timeout": timeout_seconds} if timeout_seconds else {}


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self, timeout_seconds: float | None = None):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self.timeout_seconds = timeout_seconds
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError as exc:
                raise RuntimeError("anthropic package not installed. Run: pip install anthropic") from exc
            self._client = anthropic.Anthropic(api_key=self.api_key, **_timeout_kwargs(self.timeout_seconds))
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()
        system_msg, chat_messages = _split_system(messages)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)

        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    def __init__(self, timeout_seconds: float | None = None):
        self.api_key = os.getenv("OPENAI_API_KEY", "")
        self.timeout_seconds = timeout_seconds
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError as exc:
                raise RuntimeError("openai package not installed. Run: pip install openai") from exc
            self._client = openai.OpenAI(api_key=self.api_key, **_timeout_kwargs(self.timeout_seconds))
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 4096),
            temperature=kwargs.get("temperature", 0.3),
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content or "",
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Environment:
        GEMINI_API_KEY
    """

    def __init__(self, timeout_seconds: float | None = None):
        self.api_key = os.getenv("GEMINI_API_KEY", "")
        self.timeout_seconds = timeout_seconds
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from google import genai
            except ImportError as exc:
                raise RuntimeError(
                    "google-genai package not installed. Run: pip install google-genai"
                ) from exc
            from google.genai import types

            http_options = None
            if self.timeout_seconds:
                # HttpOptions.timeout is in milliseconds
                http_options = types.HttpOptions(timeout=int(self.timeout_seconds * 1000))
            self._client = genai.Client(api_key=self.api_key, http_options=http_options)
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        client = self._get_client()
        from google.genai import types

        system_msg, chat_messages = _split_system(messages)
        contents = [
            types.Content(
                # Gemini uses "user" and "model" roles
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 4096),
        )
        if system_msg:
            config.system_instruction = system_msg

        response = client.models.generate_content(model=model, contents=contents, config=config)

        return {
            "content": response.text or "",
            "prompt_tokens": getattr(response.usage_metadata, "prompt_token_count", 0) or 0,
            "completion_tokens": getattr(response.usage_metadata, "candidates_token_count", 0) or 0,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Deterministic stand-in for dev/testing. No API key required.

    For extraction prompts it returns the leading paragraphs of the
    reference material (roughly a quarter of it), which keeps headers and
    citations intact the way a real extraction would.
    """

    REFERENCE_MARKER = "REFERENCE MATERIAL:"

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg)
        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @classmethod
    def _generate_stub_response(cls, user_msg: str) -> str:
        if cls.REFERENCE_MARKER in user_msg:
            reference = user_msg.split(cls.REFERENCE_MARKER, 1)[1].strip()
            paragraphs = [p for p in reference.split("\n\n") if p.strip()]
            keep = max(1, len(paragraphs) // 4)
            return "\n\n".join(paragraphs[:keep])
        return "No relevant guidance identified."


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Usage:
        gw = LLMGateway()
        result = gw.chat(
            messages=[{"role": "user", "content": "..."}],
            model="claude-3-5-haiku-20241022",
            purpose="discipline_extraction",
        )
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # Anthropic
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        # OpenAI
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        # Google Gemini
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gemini-2.5-flash")

    def __init__(
        self,
        default_model: str | None = None,
        backoff_cap_seconds: float = 4,
        *,
        timeout_seconds: float | None = None,
        allow_stub_fallback: bool = False,
    ):
        self._providers: dict[str, LLMProvider] = {}
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self.backoff_cap_seconds = backoff_cap_seconds
        self.timeout_seconds = timeout_seconds
        self.allow_stub_fallback = allow_stub_fallback
        self._init_providers()

    def _init_providers(self):
        """Initialize available providers based on environment."""
        self._providers["local"] = LocalStubProvider()

        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider(self.timeout_seconds)
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider(self.timeout_seconds)
        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider(self.timeout_seconds)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Returns (provider, provider_name).

        Raises:
            UpstreamUnavailableError: no provider is configured for ``model``
                and stub fallback is disabled.
        """
        provider_name = self.PROVIDER_MAP.get(model)

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        if not self.allow_stub_fallback:
            logger.error("No provider configured for model '%s' (provider=%s)", model, provider_name)
            raise UpstreamUnavailableError("text generation", "provider not configured")

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        max_retries: int = 3,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with retry.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            UpstreamUnavailableError: every attempt failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt < max_retries:
                    threading.Event().wait(min(2 ** (attempt - 1), self.backoff_cap_seconds))
                continue

            result["latency_ms"] = int((time.time() - start_time) * 1000)
            result["provider"] = provider_name
            logger.info(
                "LLM call ok: purpose=%s provider=%s model=%s tokens=%d+%d latency=%dms user=%s",
                purpose, provider_name, result.get("model", model),
                result.get("prompt_tokens", 0), result.get("completion_tokens", 0),
                result["latency_ms"], user,
            )
            return result

        raise UpstreamUnavailableError(
            "text generation", f"failed after {max_retries} attempts: {last_error}",
        )
