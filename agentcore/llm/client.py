"""
Model client port and the Gemini REST implementation.

The port is deliberately narrow: free-form completion and schema-constrained
JSON completion. Implementations are stateless apart from their HTTP client.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx

from agentcore.config import MODEL_BASE_URL, MODEL_ID
from agentcore.errors import (
    EmptyCompletion,
    MalformedJson,
    UpstreamRejected,
    UpstreamUnavailable,
)
from agentcore.llm.schema import ResponseSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    role: str        # user | assistant
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}


@dataclass(frozen=True)
class Sampling:
    temperature: float
    max_tokens: int
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: tuple[str, ...] = field(default_factory=tuple)
    candidate_count: Optional[int] = None

    def to_dict(self) -> dict:
        out: dict = {"temperature": self.temperature, "maxTokens": self.max_tokens}
        if self.top_p is not None:
            out["topP"] = self.top_p
        if self.top_k is not None:
            out["topK"] = self.top_k
        if self.stop_sequences:
            out["stopSequences"] = list(self.stop_sequences)
        if self.candidate_count:
            out["candidateCount"] = self.candidate_count
        return out


def parse_structured_output(text: str, schema: ResponseSchema) -> Any:
    """Parse provider text as JSON and re-validate it against ``schema``."""
    if not text or not text.strip():
        raise EmptyCompletion("Model returned no content")
    try:
        value = json.loads(text)
    except ValueError as e:
        logger.error(f"Invalid JSON from model for schema '{schema.name}': {text[:200]!r}")
        raise MalformedJson("Invalid JSON from model", details={"schema": schema.name}) from e
    return schema.validate(value)


class ModelClient(ABC):
    """Abstract generative-model interface."""

    model_id: str = MODEL_ID

    @abstractmethod
    async def complete(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        sampling: Sampling,
    ) -> str:
        """Return plain text for the conversation."""

    @abstractmethod
    async def complete_structured(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        sampling: Sampling,
        response_schema: ResponseSchema,
    ) -> Any:
        """Return a parsed JSON value that conforms to ``response_schema``."""

    async def probe(self) -> dict:
        """Issue a tiny completion to check the provider is reachable."""
        text = await self.complete(
            "Reply with OK.",
            [ChatMessage(role="user", text="Test connection")],
            Sampling(temperature=0.0, max_tokens=16),
        )
        return {"model": self.model_id, "reply": text[:50]}

    async def aclose(self) -> None:
        pass


# Finish reasons that mean the provider refused to answer.
_REJECTING_FINISH_REASONS = {
    "SAFETY", "LANGUAGE", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII",
    "MALFORMED_FUNCTION_CALL", "OTHER",
}


class GeminiClient(ModelClient):
    """ModelClient backed by the Generative Language REST API (``generateContent``)."""

    def __init__(
        self,
        api_key: str,
        model_id: str = MODEL_ID,
        base_url: str = MODEL_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self.model_id = model_id
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_request(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        sampling: Sampling,
        response_schema: Optional[ResponseSchema] = None,
    ) -> dict:
        generation_config: dict[str, Any] = {
            "temperature": sampling.temperature,
            "maxOutputTokens": sampling.max_tokens,
        }
        if sampling.top_p is not None:
            generation_config["topP"] = sampling.top_p
        if sampling.top_k is not None:
            generation_config["topK"] = sampling.top_k
        if sampling.stop_sequences:
            generation_config["stopSequences"] = list(sampling.stop_sequences)
        if sampling.candidate_count:
            generation_config["candidateCount"] = sampling.candidate_count
        if response_schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = response_schema.provider_schema()

        body: dict[str, Any] = {
            "contents": [
                {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.text}]}
                for m in messages
            ],
            "generationConfig": generation_config,
        }
        if system_instruction:
            body["systemInstruction"] = {"role": "system", "parts": [{"text": system_instruction}]}
        return body

    async def _generate(self, body: dict) -> dict:
        url = f"{self._base_url}/models/{self.model_id}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}
        try:
            response = await self._client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable("Model provider timed out") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"Model provider unreachable: {type(e).__name__}") from e

        if response.status_code >= 400:
            provider_error: dict = {}
            try:
                provider_error = response.json().get("error", {}) or {}
            except ValueError:
                pass
            message = provider_error.get("message") or f"Model provider returned HTTP {response.status_code}"
            logger.warning(f"Gemini request failed: {response.status_code} {message}")
            raise UpstreamRejected(message, details={
                "status": response.status_code,
                "providerStatus": provider_error.get("status"),
            })

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRejected("Model provider returned a non-JSON body") from e

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise UpstreamRejected(f"Prompt blocked by provider: {block_reason}", details={"blockReason": block_reason})
        return data

    @staticmethod
    def extract_text(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        finish_reason = first.get("finishReason")
        if not text and finish_reason in _REJECTING_FINISH_REASONS:
            logger.warning(f"Gemini stop reason: {finish_reason}")
            raise UpstreamRejected(f"Provider stopped with {finish_reason}", details={"finishReason": finish_reason})
        return text

    async def complete(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        sampling: Sampling,
    ) -> str:
        data = await self._generate(self.build_request(system_instruction, messages, sampling))
        text = self.extract_text(data)
        if not text:
            raise EmptyCompletion("Gemini returned no content")
        return text

    async def complete_structured(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        sampling: Sampling,
        response_schema: ResponseSchema,
    ) -> Any:
        body = self.build_request(system_instruction, messages, sampling, response_schema)
        data = await self._generate(body)
        return parse_structured_output(self.extract_text(data), response_schema)
