"""Unified LLM chat client supporting Anthropic and OpenAI-compatible providers."""

from __future__ import annotations

import os
import threading
from typing import Any, Optional

import anthropic
import openai

from .errors import LLMError

_PROVIDER_BASE_URLS: dict[str, str] = {
    "ollama": "http://127.0.0.1:11434/v1",
    "moonshot": "https://api.moonshot.ai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "lmstudio": "http://localhost:1234/v1",
}

# Maps provider name to its required environment variable.
# None means no API key is required (local servers).
_PROVIDER_ENV_VARS: dict[str, Optional[str]] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "moonshot": "MOONSHOT_API_KEY",
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "lmstudio": None,
    "ollama": None,
}


def get_api_key(provider: str, caller: str = "atomizer") -> str:
    """Return the API key for *provider* from the environment.

    Raises LLMError if the required environment variable is not set.
    Local providers (Ollama, LM Studio) need no key and get a placeholder.
    """
    env_var = _PROVIDER_ENV_VARS.get(provider, "OPENAI_API_KEY")
    if env_var is None:
        return provider
    api_key = os.environ.get(env_var)
    if not api_key:
        raise LLMError(f"{caller}: {env_var} is not set")
    return api_key


def make_client(
    provider: str,
    api_key: str,
    timeout: float = 30.0,
    base_url: Optional[str] = None,
) -> Any:
    """Create and return an LLM client for *provider*.

    For OpenAI-compatible providers the base URL is *base_url* if given, else the
    built-in default for the provider.  Clients never retry on their own.
    """
    if provider == "anthropic":
        return anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
    resolved_url = base_url or _PROVIDER_BASE_URLS.get(provider)
    return openai.OpenAI(
        api_key=api_key, base_url=resolved_url, timeout=timeout, max_retries=0
    )


class _ApiTimeout(Exception):
    """Raised when an LLM API call exceeds the hard per-call timeout."""


def run_with_timeout(func, timeout, *args, **kwargs):
    """Run *func* in a daemon thread; raise _ApiTimeout if it doesn't finish.

    This enforces a hard wall-clock limit that is not affected by OS-level
    blocking (e.g. DNS resolution) which application-layer timeouts cannot
    interrupt.
    """
    result: list = [None]
    exc: list = [None]

    def target():
        try:
            result[0] = func(*args, **kwargs)
        except BaseException as e:
            exc[0] = e

    t = threading.Thread(target=target, daemon=True)
    t.start()
    t.join(timeout=timeout)
    if t.is_alive():
        raise _ApiTimeout(f"API call exceeded {timeout}s hard limit")
    if exc[0] is not None:
        raise exc[0]
    return result[0]


def _chat_anthropic(client, model, max_tokens, temperature, system, messages, caller):
    try:
        response = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=messages,
        )
    except anthropic.APIError as exc:
        raise LLMError(f"{caller}: Anthropic API error: {exc}") from exc
    return "".join(
        block.text for block in response.content if getattr(block, "type", "") == "text"
    )


def _chat_openai(client, provider, model, max_tokens, temperature, system, messages, caller):
    create_kwargs: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "system", "content": system}] + list(messages),
    }
    if provider == "moonshot":
        create_kwargs["extra_body"] = {"thinking": {"type": "disabled"}}
    try:
        response = client.chat.completions.create(**create_kwargs)
    except openai.APIError as exc:
        raise LLMError(f"{caller}: {provider} API error: {exc}") from exc
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


def call_chat(
    client: Any,
    provider: str,
    model: str,
    max_tokens: int,
    temperature: float,
    system: str,
    messages: list,
    timeout: float = 30.0,
    caller: str = "atomizer",
) -> str:
    """Send one chat request and return the assistant's text.

    A hard limit of *timeout* + 5 seconds wraps the call.  Every failure
    (API error, transport error, timeout) is raised as LLMError.
    """
    if provider == "anthropic":
        func, args = _chat_anthropic, (client, model, max_tokens, temperature, system, messages, caller)
    else:
        func, args = _chat_openai, (
            client, provider, model, max_tokens, temperature, system, messages, caller
        )
    try:
        return run_with_timeout(func, timeout + 5, *args)
    except LLMError:
        raise
    except _ApiTimeout as exc:
        raise LLMError(f"{caller}: {exc}") from exc
    except Exception as exc:
        raise LLMError(f"{caller}: {provider} request failed: {exc}") from exc
