"""
DocVoice - Reply Generator client

Implements the single external operation the turn controller depends on:

    text = await generator.generate_reply(history, context, persona)

GeminiReplyGenerator calls the Gemini ``generateContent`` REST endpoint with:
    - the persona, voice-assistant instructions and the document as a first
      user turn, followed by a canned model acknowledgement,
    - the full conversation history (no server-side session),
    - retry with backoff on 5xx / transport errors, no retry on 4xx.

Any failure raises ReplyGenerationError; the controller turns that into a
ReplyFailed event.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from docvoice.shared.log_redaction import redact_dict, redact_string
from docvoice.voice.turn_state import Message

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_DEFAULT_MODEL = "gemini-2.5-flash"
_TIMEOUT = 30.0
_RETRIES = 2
_BACKOFF = 1.5

FALLBACK_REPLY = "I couldn't generate a response."

_VOICE_INSTRUCTIONS = (
    "You are a helpful voice assistant. Keep your responses concise and "
    "conversational since they will be spoken aloud. Avoid using markdown "
    "formatting, bullet points, or numbered lists in your responses."
)

_MODEL_ACK = (
    "I understand. I'll act as a helpful voice assistant. I'll keep my "
    "responses concise and conversational. How can I help you?"
)


class ReplyGenerationError(Exception):
    """Raised when no reply could be obtained from the language model."""
    pass


class ReplyGenerator:
    """Abstract reply generator."""

    async def generate_reply(
        self,
        history: Sequence[Message],
        context: str,
        persona: str,
    ) -> str:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


def build_system_message(persona: str, document: str) -> str:
    """Compose the instruction block sent ahead of the conversation."""
    if document:
        knowledge = (
            "Here is the document content you have access to for reference:\n"
            "---\n"
            f"{document}\n"
            "---\n\n"
            "You can answer questions about this document, but you are also "
            "able to answer general questions on any topic."
        )
    else:
        knowledge = "You can answer general questions on any topic."
    return f"{persona}\n\n{_VOICE_INSTRUCTIONS}\n\n{knowledge}"


def build_contents(
    history: Sequence[Message],
    context: str,
    persona: str,
) -> List[Dict[str, Any]]:
    """Build the Gemini ``contents`` array for one request."""
    contents: List[Dict[str, Any]] = [
        {"role": "user", "parts": [{"text": build_system_message(persona, context)}]},
        {"role": "model", "parts": [{"text": _MODEL_ACK}]},
    ]
    for msg in history:
        contents.append({
            "role": "model" if msg.role == "assistant" else "user",
            "parts": [{"text": msg.text}],
        })
    return contents


def _extract_text(data: Any) -> str:
    """Join the text parts of the first candidate."""
    if not isinstance(data, dict):
        raise ReplyGenerationError("invalid response body: expected a JSON object")
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    parts = (content.get("parts") if isinstance(content, dict) else None) or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()


class GeminiReplyGenerator(ReplyGenerator):
    """Reply generator backed by the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = _DEFAULT_BASE_URL,
        model: str = _DEFAULT_MODEL,
        timeout: float = _TIMEOUT,
        retries: int = _RETRIES,
        backoff: float = _BACKOFF,
        max_output_tokens: int = 500,
        temperature: float = 0.7,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, reply_cfg: Dict[str, Any], api_key: str, **kwargs) -> "GeminiReplyGenerator":
        return cls(
            api_key=api_key,
            base_url=reply_cfg.get("base_url", _DEFAULT_BASE_URL),
            model=reply_cfg.get("model", _DEFAULT_MODEL),
            timeout=reply_cfg.get("timeout_secs", _TIMEOUT),
            retries=reply_cfg.get("retries", _RETRIES),
            backoff=reply_cfg.get("backoff", _BACKOFF),
            max_output_tokens=reply_cfg.get("max_output_tokens", 500),
            temperature=reply_cfg.get("temperature", 0.7),
            **kwargs,
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init a shared httpx.AsyncClient."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Shutdown the shared client (call on app shutdown)."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def build_payload(
        self,
        history: Sequence[Message],
        context: str,
        persona: str,
    ) -> Dict[str, Any]:
        return {
            "contents": build_contents(history, context, persona),
            "generationConfig": {
                "maxOutputTokens": self.max_output_tokens,
                "temperature": self.temperature,
            },
        }

    async def generate_reply(
        self,
        history: Sequence[Message],
        context: str,
        persona: str,
    ) -> str:
        """
        Request one assistant reply for *history*.

        Returns:
            The reply text, or FALLBACK_REPLY when the model returned none.

        Raises:
            ReplyGenerationError on missing credentials, 4xx, or when all
            retries are exhausted.
        """
        if not self.api_key:
            raise ReplyGenerationError("Gemini API key not configured")

        t0 = time.monotonic()
        payload = self.build_payload(history, context, persona)
        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.api_key}
        client = self._get_client()

        last_err: Optional[str] = None
        for attempt in range(self.retries):
            try:
                resp = await client.post(url, json=payload, headers=headers, timeout=self.timeout)

                if resp.status_code == 200:
                    text = _extract_text(resp.json())
                    logger.info(
                        "reply_client: ok  model=%s  turns=%d  reply_len=%d  elapsed=%.0fms",
                        self.model, len(history), len(text), (time.monotonic() - t0) * 1000,
                    )
                    return text or FALLBACK_REPLY

                # 4xx -- don't retry
                if 400 <= resp.status_code < 500:
                    raise ReplyGenerationError(
                        f"HTTP {resp.status_code}: {_error_message(resp)}"
                    )

                # 5xx -- retry
                last_err = f"HTTP {resp.status_code}"

            except httpx.TimeoutException:
                last_err = "timeout"
            except httpx.RequestError as e:
                last_err = redact_string(str(e))
            except ValueError as e:
                # Undecodable JSON body on a 200
                raise ReplyGenerationError(f"invalid response body: {e}") from e

            logger.warning(
                "reply_client: attempt %d/%d failed  model=%s  error=%s",
                attempt + 1, self.retries, self.model, last_err,
            )
            if attempt < self.retries - 1:
                await asyncio.sleep(self.backoff ** attempt)

        raise ReplyGenerationError(f"reply failed after retries: {last_err}")


def _error_message(resp: httpx.Response) -> str:
    """Pull the API error message out of a 4xx body, scrubbed for logging."""
    try:
        body = resp.json()
    except ValueError:
        return "unknown"
    err = body.get("error") if isinstance(body, dict) else None
    if not isinstance(err, dict):
        return "unknown"
    logger.debug("reply_client: error body  status=%d  error=%s", resp.status_code, redact_dict(err))
    return redact_string(str(err.get("message", "unknown")))
