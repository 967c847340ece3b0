"""Adapter around OpenAI-compatible inference gateways."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

from ..config import ProviderConfig
from ..logging import get_logger

logger = get_logger("llm")


class InferenceError(RuntimeError):
    """Raised when the inference call itself fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StructuredOutputError(InferenceError):
    """Raised when the model answered but the answer did not satisfy the schema."""

    def __init__(self, message: str, *, text: str) -> None:
        super().__init__(message)
        self.text = text


@dataclass
class LLMRequest:
    """Represents one structured-generation request."""

    instructions: str
    payload: str
    schema: Dict[str, Any]
    model: str
    base_url: str
    api_key: Optional[str]
    headers: Mapping[str, str] = field(default_factory=dict)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    request_timeout: float = 120.0


class LLMRunner:
    """Executes structured prompts against the configured provider."""

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        runner: Callable[[LLMRequest], Awaitable[str]] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider = provider
        self._client = client
        self._runner = runner or self._http_runner

    async def generate(
        self,
        instructions: str,
        payload: str,
        schema: Type[BaseModel],
    ) -> List[Dict[str, Any]]:
        """Return the schema's entries as plain dicts, or raise StructuredOutputError."""
        request = LLMRequest(
            instructions=instructions,
            payload=payload,
            schema=schema.model_json_schema(),
            model=self.provider.model,
            base_url=self.provider.base_url,
            api_key=self.provider.api_key,
            headers=dict(self.provider.headers),
            temperature=self.provider.temperature,
            max_tokens=self.provider.max_tokens,
            request_timeout=self.provider.request_timeout,
        )
        text = await self._runner(request)
        try:
            parsed = schema.model_validate_json(text)
        except ValidationError as exc:
            logger.debug("Response from %s did not match %s: %s", self.provider.model, schema.__name__, exc)
            raise StructuredOutputError(
                f"Model response did not match {schema.__name__}", text=text
            ) from exc
        entries = parsed.entries()  # type: ignore[attr-defined]
        return [entry.model_dump(exclude_none=True, by_alias=True) for entry in entries]

    async def _http_runner(self, request: LLMRequest) -> str:
        if not request.api_key:
            raise InferenceError(
                f"No API key configured for provider '{self.provider.name}'."
            )
        endpoint = f"{request.base_url}/chat/completions"
        body: dict[str, object] = {
            "model": request.model,
            "messages": self._build_messages(request),
            "response_format": {"type": "json_object"},
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens

        headers = {"Content-Type": "application/json", **request.headers}
        headers["Authorization"] = f"Bearer {request.api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(
                    endpoint, json=body, headers=headers, timeout=request.request_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=request.request_timeout) as client:
                    response = await client.post(endpoint, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise InferenceError(f"Inference request timed out after {request.request_timeout}s") from exc
        except httpx.HTTPError as exc:
            raise InferenceError(f"Inference request failed: {exc}") from exc

        if response.status_code != 200:
            detail = response.text.strip()[:500]
            raise InferenceError(
                f"Inference request failed with status {response.status_code}: {detail}",
                status=response.status_code,
            )
        try:
            response_payload = response.json()
        except json.JSONDecodeError as exc:
            raise InferenceError("Inference gateway returned invalid JSON") from exc

        content = self._extract_content(response_payload)
        if not content:
            raise InferenceError("Inference gateway returned an empty response")
        return content.strip()

    @staticmethod
    def _build_messages(request: LLMRequest) -> list[dict[str, str]]:
        system = (
            f"{request.instructions.strip()}\n\n"
            "Respond with a single JSON object that validates against this JSON schema:\n"
            f"{json.dumps(request.schema)}"
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": request.payload},
        ]

    @staticmethod
    def _extract_content(payload: object) -> str:
        if not isinstance(payload, dict):
            return ""
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        first = choices[0]
        if not isinstance(first, dict):
            return ""
        message = first.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str):
                return content
        text = first.get("text")
        if isinstance(text, str):
            return text
        return ""


__all__ = ["InferenceError", "LLMRequest", "LLMRunner", "StructuredOutputError"]
