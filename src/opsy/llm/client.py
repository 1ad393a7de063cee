"""Thin client for the Anthropic Messages API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from urllib import request
from urllib.error import HTTPError, URLError

from opsy.errors import ModelRequestError

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    """A request from the model to invoke ``name``.

    ``input`` is whatever the API returned for the block's input, usually an
    already-decoded object but possibly a JSON string.
    """

    id: str
    name: str
    input: object


ContentBlock = TextBlock | ToolUseBlock


@dataclass(slots=True)
class ModelResponse:
    """Content blocks of one model turn, in order."""

    content: list[ContentBlock]
    stop_reason: str | None = None
    raw_content: list[dict[str, object]] = field(default_factory=list)

    def to_param(self) -> dict[str, object]:
        """The response as an assistant turn for the next request."""
        return {"role": "assistant", "content": [dict(block) for block in self.raw_content]}


class AnthropicClient:
    """Small HTTP client for the Messages endpoint; no retries."""

    def __init__(
        self,
        *,
        api_key: str | None,
        api_url: str = DEFAULT_API_URL,
        api_version: str = API_VERSION,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.api_version = api_version
        self.timeout = timeout

    def create_message(
        self,
        payload: dict[str, object],
        *,
        timeout: float | None = None,
    ) -> ModelResponse:
        """Send ``payload`` and parse the reply; raises :class:`ModelRequestError`."""
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": self.api_version,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        effective_timeout = self.timeout if timeout is None else min(self.timeout, timeout)

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": payload.get("model"),
                "payload_bytes": len(body),
                "turns": len(payload.get("messages") or []),  # type: ignore[arg-type]
                "tools_count": len(payload.get("tools") or []),  # type: ignore[arg-type]
                "timeout_seconds": effective_timeout,
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=effective_timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise ModelRequestError(details) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"api_url": self.api_url, "reason": str(exc.reason)},
            )
            raise ModelRequestError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={"api_url": self.api_url, "timeout_seconds": effective_timeout},
            )
            raise ModelRequestError(
                f"Model request timed out after {effective_timeout:.1f}s"
            ) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"api_url": self.api_url, "error": str(exc)},
            )
            raise ModelRequestError(f"Model response parsing error: {exc}") from exc

        if not isinstance(raw_response, dict):
            raise ModelRequestError("Model response parsing error: expected top-level object")
        return self.parse_response(raw_response)

    @staticmethod
    def parse_response(payload: dict[str, object]) -> ModelResponse:
        raw_items = payload.get("content")
        if not isinstance(raw_items, list):
            raise ModelRequestError("Model response parsing error: missing content list")

        content: list[ContentBlock] = []
        raw_content: list[dict[str, object]] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            raw_content.append(item)
            block_type = item.get("type")
            if block_type == "text" and isinstance(item.get("text"), str):
                content.append(TextBlock(text=str(item["text"])))
            elif block_type == "tool_use":
                content.append(
                    ToolUseBlock(
                        id=str(item.get("id", "")),
                        name=str(item.get("name", "")),
                        input=item.get("input"),
                    )
                )

        stop_reason = payload.get("stop_reason")
        return ModelResponse(
            content=content,
            stop_reason=stop_reason if isinstance(stop_reason, str) else None,
            raw_content=raw_content,
        )

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
