"""OpenAI client helper for the text-signal extractor.

Centralises API-key handling so extraction code can simply do:

    from cohort_insights.openai_client import chat_completion

and receive a plain ``dict`` shaped like
``{"choices": [{"message": {"content": ...}}], "model": ...}``.
"""
from __future__ import annotations

import logging
import os
import threading
import types
from typing import Any, Dict, List, Optional

from cohort_insights import config

logger = logging.getLogger(__name__)


class OpenAIClientError(RuntimeError):
    """Raised when client configuration is invalid (e.g., missing API key)."""


_client: Optional[Any] = None
_client_lock = threading.Lock()


def _load_openai() -> types.ModuleType:
    """Import ``openai`` lazily.

    Loading is deferred so that unit tests can inject a stub into
    ``sys.modules`` before this function runs.
    """

    import importlib

    return importlib.import_module("openai")


def _ensure_api_key_present() -> str:
    """Return the ``OPENAI_API_KEY`` env var or raise.

    Raises
    ------
    OpenAIClientError
        If the env var is missing or empty.
    """

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise OpenAIClientError("OPENAI_API_KEY environment variable is not set.")
    return api_key


def get_openai_client() -> Any:
    """Return a process-wide ``openai.OpenAI`` client, creating it on first use.

    ``OPENAI_ORG`` is forwarded as the organization when set. The client is
    shared by every extraction worker thread.
    """

    global _client
    with _client_lock:
        if _client is not None:
            return _client

        api_key = _ensure_api_key_present()
        openai = _load_openai()
        kwargs: Dict[str, Any] = {"api_key": api_key}
        org = os.getenv("OPENAI_ORG")
        if org:
            kwargs["organization"] = org
        _client = openai.OpenAI(**kwargs)
        logger.debug("OpenAI client initialised")
        return _client


def reset_client() -> None:  # noqa: D401 – test helper
    """Drop the cached client so the next call re-reads the environment."""
    global _client
    with _client_lock:
        _client = None


def chat_completion(
    messages: List[Dict[str, str]],
    *,
    model: str = config.EXTRACTION_MODEL,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Wrapper around ``client.chat.completions.create``.

    Parameters
    ----------
    messages
        Chat messages in OpenAI format.
    model
        Model id to use (default: ``COHORT_EXTRACTION_MODEL``).
    kwargs
        Additional parameters forwarded to ``chat.completions.create``.
    """

    client = get_openai_client()
    completion = client.chat.completions.create(model=model, messages=messages, **kwargs)
    choices = [{"message": {"content": choice.message.content}} for choice in completion.choices]
    return {"choices": choices, "model": getattr(completion, "model", model)}
