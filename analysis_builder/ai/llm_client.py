"""
LLM client used by the prompt planner.

Providers:
  mock      -- canned empty selection, no network (tests / offline dev)
  openai    -- Chat Completions, ``gpt-4o-mini``
  anthropic -- Messages API, ``claude-3-haiku``

The SDKs ship in the optional ``llm`` extra and are imported on first use.
Keys come from Settings (env / .env).
"""
from __future__ import annotations

import importlib
from types import ModuleType
from typing import Callable

from analysis_builder.core.config import get_settings
from analysis_builder.core.logging import get_logger

logger = get_logger(__name__)

OPENAI_MODEL = "gpt-4o-mini"
ANTHROPIC_MODEL = "claude-3-haiku-20240307"
MAX_TOKENS = 1024

DEFAULT_SYSTEM_PROMPT = "You translate analytics questions into query-builder selections."

EMPTY_SELECTION = '{"metrics": [], "breakdowns": [], "filters": []}'


def _api_key(setting: str) -> str:
    key = getattr(get_settings(), setting)
    if not key:
        raise RuntimeError(
            f"{setting} is not set.  Set {setting.upper()} in your .env file or environment."
        )
    return key


def _sdk(module: str) -> ModuleType:
    try:
        return importlib.import_module(module)
    except ImportError as exc:
        raise RuntimeError(
            f"The '{module}' package is not installed.  "
            "Run: pip install 'analysis-builder[llm]'"
        ) from exc


def _mock(prompt: str, system: str) -> str:
    logger.info("LLM mock mode -- empty selection")
    return EMPTY_SELECTION


def _openai(prompt: str, system: str) -> str:
    api_key = _api_key("openai_api_key")
    client = _sdk("openai").OpenAI(api_key=api_key)
    completion = client.chat.completions.create(
        model=OPENAI_MODEL,
        temperature=0.0,
        max_tokens=MAX_TOKENS,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
    )
    return completion.choices[0].message.content or ""


def _anthropic(prompt: str, system: str) -> str:
    api_key = _api_key("anthropic_api_key")
    client = _sdk("anthropic").Anthropic(api_key=api_key)
    message = client.messages.create(
        model=ANTHROPIC_MODEL,
        max_tokens=MAX_TOKENS,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    )
    return message.content[0].text if message.content else ""


_PROVIDERS: dict[str, Callable[[str, str], str]] = {
    "mock": _mock,
    "openai": _openai,
    "anthropic": _anthropic,
}


def available_providers() -> list[str]:
    return list(_PROVIDERS)


def call_llm(prompt: str, provider: str | None = None, system: str | None = None) -> str:
    """Send *prompt* to *provider* (settings default when omitted) and return the raw text.

    Raises ``NotImplementedError`` for an unknown provider and
    ``RuntimeError`` when the key or SDK for a real provider is missing.
    """
    name = (provider or get_settings().llm_provider).lower()
    fn = _PROVIDERS.get(name)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{name}' is not supported.  Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("LLM call provider=%s prompt_len=%d", name, len(prompt))
    text = fn(prompt, system or DEFAULT_SYSTEM_PROMPT)
    logger.info("LLM response provider=%s (%d chars)", name, len(text))
    return text
