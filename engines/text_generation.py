"""HTTP client for the OpenAI-style text-generation backend."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import requests

from engines.base import GenerationResult, TextGenerator
from env_validation import DEFAULT_LLM_URL, DEFAULT_MODEL_ID, get_env_bool, get_env_float

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a patient tutor. Guide the student with short questions and hints. "
    "Never reveal the final answer."
)


def _extract_text(data: Any) -> Optional[str]:
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    try:
        return data["choices"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


class LLMTextGenerator(TextGenerator):
    """Chat-completions client.

    Every failure (transport, HTTP status, malformed payload) is returned as a
    failed :class:`GenerationResult`; nothing is raised to the caller.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        model_id: Optional[str] = None,
        timeout: Optional[float] = None,
        send_max_tokens: Optional[bool] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.url = url or os.getenv("LLM_URL") or os.getenv("GPT4ALL_URL") or DEFAULT_LLM_URL
        self.model_id = model_id or os.getenv("MODEL_ID") or DEFAULT_MODEL_ID
        self.timeout = timeout if timeout is not None else get_env_float("LLM_TIMEOUT", 60.0)
        self.send_max_tokens = (
            send_max_tokens if send_max_tokens is not None else get_env_bool("SEND_MAX_TOKENS", True)
        )
        self.system_prompt = system_prompt

    def _payload(self, prompt: str, temperature: float, max_tokens: int, minimal: bool = False) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]
        payload: Dict[str, Any] = {"model": self.model_id, "messages": messages}
        if not minimal:
            payload["temperature"] = float(temperature)
        if max_tokens and self.send_max_tokens:
            payload["max_tokens"] = int(max_tokens)
        return payload

    def generate(self, prompt: str, *, temperature: float = 0.7, max_tokens: int = 300) -> GenerationResult:
        try:
            r = requests.post(self.url, json=self._payload(prompt, temperature, max_tokens), timeout=self.timeout)
            if r.status_code == 400:
                # Fallback: some local backends reject sampling parameters
                r = requests.post(
                    self.url,
                    json=self._payload(prompt, temperature, max_tokens, minimal=True),
                    timeout=self.timeout,
                )
            r.raise_for_status()
            data = r.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            logger.warning("Text generation HTTP %s from %s", status, self.url)
            return GenerationResult.failure(f"LLM-HTTP {status}")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Text generation failed: %s", e)
            return GenerationResult.failure(f"LLM error: {e}")

        text = _extract_text(data)
        if not isinstance(text, str) or not text.strip():
            logger.warning("Unexpected text generation payload: %.200s", data)
            return GenerationResult.failure("Unexpected LLM response")
        return GenerationResult(ok=True, text=text.strip())
