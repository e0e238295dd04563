"""OpenAI-compatible chat client used as the classification service."""
from __future__ import annotations

import json
import logging
import os

import requests

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_TIMEOUT = 60

SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts media information from "
    "filenames. Output strictly in JSON format."
)


class LLMError(Exception):
    """Exception raised for classification service errors."""
    pass


def extract_json(text: str) -> dict | None:
    """Parse a JSON object from a reply, tolerating fences and prose."""
    text = text.strip()
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass
    # best-effort: first {...} block
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None
    return None


class LLMClient:
    """Client for ``/chat/completions`` on any OpenAI-compatible gateway."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api_key = api_key or os.environ.get("LLM_API_KEY", "")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _url(self, endpoint: str) -> str:
        # Accept both "https://host" and "https://host/v1"
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}{endpoint}"
        return f"{self.base_url}/v1{endpoint}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def list_models(self) -> list[str]:
        """Return model ids offered by the gateway."""
        if not self.configured:
            raise LLMError("LLM client not configured")
        try:
            response = requests.get(
                self._url("/models"), headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise LLMError(f"Failed to list models: {e}") from e
        return [m.get("id", "") for m in data.get("data", []) if isinstance(m, dict)]

    def generate_json(self, prompt: str) -> dict:
        """
        Send *prompt* and parse the reply as a JSON object.

        Raises:
            LLMError: On transport errors, HTTP errors or non-JSON content
        """
        if not self.configured:
            raise LLMError("LLM client not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"},
        }
        log.debug("POST chat/completions model=%s", self.model)

        try:
            response = requests.post(
                self._url("/chat/completions"),
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise LLMError(f"Completion request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("LLM returned no choices") from e

        result = extract_json(content)
        if result is None:
            log.error("Failed to parse JSON from LLM: %r", content[:200])
            raise LLMError("Invalid JSON response from LLM")
        return result
