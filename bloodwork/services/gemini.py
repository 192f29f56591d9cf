"""Thin async client for the Gemini generateContent endpoint."""
from __future__ import annotations

import logging
import os
from typing import List, Optional

import httpx

logger = logging.getLogger("bloodwork")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODELS = ["gemini-2.0-flash", "gemini-1.5-flash"]


class GeminiError(RuntimeError):
    """Gemini could not be reached or returned nothing usable."""


def get_api_key() -> str:
    return (os.getenv("GOOGLE_GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY") or "").strip()


def is_configured() -> bool:
    return bool(get_api_key())


def candidate_models() -> List[str]:
    preferred = (os.getenv("GOOGLE_GEMINI_MODEL") or "").strip()
    models = [preferred] if preferred else []
    models.extend(m for m in DEFAULT_MODELS if m not in models)
    return models


def _response_text(data: dict) -> str:
    return (
        (data.get("candidates") or [{}])[0]
        .get("content", {})
        .get("parts", [{}])[0]
        .get("text", "")
        or ""
    ).strip()


async def generate_json(prompt: str, timeout_s: float = 30, models: Optional[List[str]] = None) -> tuple:
    """Send ``prompt`` and return ``(text, model)`` from the first model that answers.

    Raises GeminiError when no key is configured or every model fails.
    """
    api_key = get_api_key()
    if not api_key:
        raise GeminiError("Gemini API key is not configured")

    errors: List[str] = []
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        for model in models or candidate_models():
            try:
                r = await client.post(
                    GEMINI_URL.format(model=model),
                    params={"key": api_key},
                    headers={"Content-Type": "application/json"},
                    json={
                        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                        "generationConfig": {
                            "temperature": 0.1,
                            "responseMimeType": "application/json",
                        },
                    },
                )
                r.raise_for_status()
                text = _response_text(r.json())
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning({"function": "gemini_generate", "model": model, "error": str(exc)[:200]})
                errors.append(f"{model}: {exc}")
                continue
            if text:
                return text, model
            errors.append(f"{model}: empty response")
    raise GeminiError("; ".join(errors) or "No Gemini model available")


__all__ = ["GeminiError", "candidate_models", "generate_json", "get_api_key", "is_configured"]
