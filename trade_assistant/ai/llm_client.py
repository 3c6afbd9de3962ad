"""
Gemini text generation over the public REST API.

Provides the small surface the review modules need: generate_text(),
a consistent prompt layout (create_prompt) and lenient JSON extraction from
model output (parse_ai_json).

Usage:
    client = GeminiClient(api_key=os.getenv("GEMINI_API_KEY", ""), model="gemini-1.5-flash")
    text = await client.generate_text(create_prompt(context, request, data), temperature=0.5)
    payload = parse_ai_json(text)
"""

import json
from typing import Any, Protocol

import httpx
from loguru import logger

from trade_assistant.config import AIConfig

PROMPT_FOOTER = (
    "Important: Provide a concise, actionable response. "
    "Focus on specific insights and recommendations."
)


class TextGenerator(Protocol):
    async def generate_text(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


class GeminiClient:
    """Async client for Gemini generateContent.

    Usage:
        client = GeminiClient(api_key="...", model="gemini-1.5-flash")
        text = await client.generate_text("Summarize this trade", temperature=0.5)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        max_tokens: int = 2048,
        default_temperature: float = 0.7,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._max_tokens = max_tokens
        self._default_temperature = default_temperature
        self._timeout = timeout
        self._transport = transport

        if not api_key:
            logger.warning("GeminiClient: GEMINI_API_KEY not set, AI reviews disabled")

    @classmethod
    def from_config(cls, config: AIConfig, api_key: str) -> "GeminiClient":
        return cls(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            default_temperature=config.default_temperature,
            timeout=config.timeout,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def generate_text(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion for a single user prompt.

        Raises:
            AIServiceError: If no API key is configured, or the request fails
                or returns no text.
        """
        if not self._api_key:
            raise AIServiceError("Gemini API key not configured")

        url = f"{self._base_url}/models/{self._model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": (
                    self._default_temperature if temperature is None else temperature
                ),
                "maxOutputTokens": max_tokens or self._max_tokens,
            },
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url, json=payload, headers={"x-goog-api-key": self._api_key}
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("GeminiClient: request to {} failed: {}", self._model, e)
            raise AIServiceError("Failed to generate AI response") from e

        text = _extract_text(data)
        if text is None:
            logger.error("GeminiClient: response had no text candidates: {}", str(data)[:200])
            raise AIServiceError("Failed to generate AI response")
        return text


def _extract_text(data: dict[str, Any]) -> str | None:
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [p.get("text", "") for p in parts if isinstance(p, dict)]
    return "".join(texts) if texts else None


# ── Prompt Helpers ──────────────────────────────────────────────────────────


def create_prompt(system_context: str, user_request: str, data: Any = None) -> str:
    """Lay out context, optional JSON data, and the request in a fixed order."""
    prompt = f"{system_context}\n\n"
    if data:
        prompt += f"Data:\n{json.dumps(data, indent=2, default=str)}\n\n"
    prompt += f"Request: {user_request}\n\n"
    prompt += PROMPT_FOOTER
    return prompt


def parse_ai_json(response: str) -> Any:
    """Parse JSON from model output, tolerating ```json fences.

    Raises:
        AIResponseFormatError: If the remaining text is not valid JSON.
    """
    text = response.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1 :] if first_newline != -1 else text[3:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]

    try:
        return json.loads(text.strip())
    except json.JSONDecodeError as e:
        logger.debug("GeminiClient: could not parse JSON from response: {}", e)
        raise AIResponseFormatError("Invalid AI response format") from e


# ── Exceptions ──────────────────────────────────────────────────────────────


class AIServiceError(Exception):
    """Text generation unavailable or failed."""


class AIResponseFormatError(AIServiceError):
    """Model output could not be parsed as the expected JSON."""
