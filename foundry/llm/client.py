from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Optional

import anthropic
import openai
from anthropic import Anthropic
from openai import OpenAI

from foundry.config import settings


class LLMClientConfigError(Exception):
    pass


class LLMTimeoutError(RuntimeError):
    pass


class LLMUpstreamError(RuntimeError):
    pass


logger = logging.getLogger(__name__)

_ANTHROPIC_MAX_TOKENS = 8192


@dataclass
class LLMGenerationParams:
    model: str
    max_tokens: Optional[int] = None
    temperature: float = 0.2
    response_format: Optional[dict[str, Any]] = None


@dataclass
class ChatUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_mapping(cls, raw: Any) -> "ChatUsage":
        """Read OpenAI (prompt/completion) or Responses/Anthropic (input/output) token counts."""
        if raw is None:
            return cls()
        if hasattr(raw, "model_dump"):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            return cls()

        def _count(*keys: str) -> int:
            for key in keys:
                value = raw.get(key)
                if value:
                    try:
                        return int(value)
                    except (TypeError, ValueError):
                        continue
            return 0

        prompt = _count("prompt_tokens", "input_tokens")
        completion = _count("completion_tokens", "output_tokens")
        total = _count("total_tokens") or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def to_payload(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ChatCompletionResult:
    model: str
    tool_arguments: Optional[str] = None
    content: str = ""
    refusal: Optional[str] = None
    finish_reason: str = ""
    usage: ChatUsage = field(default_factory=ChatUsage)


@dataclass
class ChatStreamEvent:
    text: Optional[str] = None
    usage: Optional[ChatUsage] = None


@dataclass
class GeneratedImage:
    data: bytes
    model: str
    usage: ChatUsage = field(default_factory=ChatUsage)


@dataclass
class ChatTool:
    name: str
    description: str
    parameters: dict[str, Any]


class LLMClient:
    """
    Chat and image calls for one caller-supplied API key.
    Routes ``claude*`` models to Anthropic and everything else to OpenAI.
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.timeout = float(timeout or settings.OPENAI_TIMEOUT_SECONDS)
        self.max_retries = settings.OPENAI_MAX_RETRIES if max_retries is None else max_retries
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self._openai_client: Optional[OpenAI] = None
        self._anthropic_client: Optional[Anthropic] = None

    @staticmethod
    def is_anthropic_model(model: str) -> bool:
        return model.lower().startswith("claude")

    def _openai(self) -> OpenAI:
        if not self.api_key:
            raise LLMClientConfigError("OpenAI API key not configured")
        if not self._openai_client:
            client_kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": self.timeout,
                "max_retries": self.max_retries,
            }
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            self._openai_client = OpenAI(**client_kwargs)
        return self._openai_client

    def _anthropic(self) -> Anthropic:
        api_key = settings.ANTHROPIC_API_KEY
        if not api_key:
            raise LLMClientConfigError("ANTHROPIC_API_KEY not configured")
        if not self._anthropic_client:
            self._anthropic_client = Anthropic(
                api_key=api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._anthropic_client

    # Chat

    def complete_chat(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
        *,
        tool: Optional[ChatTool] = None,
    ) -> ChatCompletionResult:
        """One chat completion. With ``tool`` set, the model is forced to call it."""
        if self.is_anthropic_model(params.model):
            return self._complete_with_anthropic(messages, params, tool)
        return self._complete_with_openai(messages, params, tool)

    def open_chat_stream(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
    ) -> Iterator[ChatStreamEvent]:
        """
        Open the upstream stream now and return an iterator over its events.

        Connection failures raise here (``LLMTimeoutError`` / ``LLMUpstreamError``);
        failures after the first byte raise from the iterator.
        """
        if self.is_anthropic_model(params.model):
            return self._stream_with_anthropic(messages, params)
        return self._stream_with_openai(messages, params)

    def _complete_with_openai(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
        tool: Optional[ChatTool],
    ) -> ChatCompletionResult:
        client = self._openai()
        completion_kwargs: dict[str, Any] = {
            "model": params.model,
            "messages": messages,
            "temperature": params.temperature,
        }
        if params.max_tokens:
            completion_kwargs["max_completion_tokens"] = params.max_tokens
        if params.response_format:
            completion_kwargs["response_format"] = params.response_format
        if tool:
            completion_kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                        "strict": True,
                    },
                }
            ]
            completion_kwargs["tool_choice"] = {"type": "function", "function": {"name": tool.name}}

        logger.info("OpenAI chat completion request", extra={"model": params.model, "tool": bool(tool)})
        try:
            completion = client.chat.completions.create(**completion_kwargs)
        except openai.APITimeoutError as exc:
            logger.warning("OpenAI chat completion timed out", extra={"model": params.model})
            raise LLMTimeoutError("OpenAI request timed out.") from exc
        except openai.APIError as exc:
            logger.exception("OpenAI chat completion failed", extra={"model": params.model})
            raise LLMUpstreamError(f"OpenAI request failed: {exc}") from exc

        result = ChatCompletionResult(
            model=str(getattr(completion, "model", None) or params.model).strip(),
            usage=ChatUsage.from_mapping(getattr(completion, "usage", None)),
        )
        if not completion or not completion.choices:
            return result
        choice = completion.choices[0]
        message = choice.message
        result.finish_reason = str(choice.finish_reason or "").strip()
        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            function = getattr(tool_calls[0], "function", None)
            arguments = getattr(function, "arguments", None)
            if arguments:
                result.tool_arguments = str(arguments)
        result.content = str(getattr(message, "content", None) or "").strip()
        refusal = getattr(message, "refusal", None)
        result.refusal = refusal if isinstance(refusal, str) else None
        return result

    def _stream_with_openai(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
    ) -> Iterator[ChatStreamEvent]:
        client = self._openai()
        completion_kwargs: dict[str, Any] = {
            "model": params.model,
            "messages": messages,
            "temperature": params.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if params.max_tokens:
            completion_kwargs["max_completion_tokens"] = params.max_tokens
        if params.response_format:
            completion_kwargs["response_format"] = params.response_format

        logger.info("OpenAI chat stream request", extra={"model": params.model})
        try:
            stream = client.chat.completions.create(**completion_kwargs)
        except openai.APITimeoutError as exc:
            logger.warning("OpenAI chat stream timed out before opening", extra={"model": params.model})
            raise LLMTimeoutError("OpenAI request timed out.") from exc
        except openai.APIError as exc:
            logger.exception("OpenAI chat stream failed to open", extra={"model": params.model})
            raise LLMUpstreamError(f"OpenAI request failed: {exc}") from exc

        def _events() -> Iterator[ChatStreamEvent]:
            with stream:
                for chunk in stream:
                    usage = getattr(chunk, "usage", None)
                    if usage:
                        yield ChatStreamEvent(usage=ChatUsage.from_mapping(usage))
                    choices = getattr(chunk, "choices", None) or []
                    if not choices:
                        continue
                    delta = getattr(choices[0], "delta", None)
                    text = getattr(delta, "content", None)
                    if text:
                        yield ChatStreamEvent(text=text)

        return _events()

    @staticmethod
    def _split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        rest = [{"role": m["role"], "content": m["content"]} for m in messages if m.get("role") != "system"]
        return "\n\n".join(system_parts), rest

    def _anthropic_kwargs(self, messages: list[dict[str, str]], params: LLMGenerationParams) -> dict[str, Any]:
        system, rest = self._split_system(messages)
        max_tokens = min(params.max_tokens or 4096, _ANTHROPIC_MAX_TOKENS)
        request_kwargs: dict[str, Any] = {
            "model": params.model,
            "max_tokens": max_tokens,
            "temperature": params.temperature,
            "messages": rest,
        }
        if system:
            request_kwargs["system"] = system
        return request_kwargs

    def _complete_with_anthropic(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
        tool: Optional[ChatTool],
    ) -> ChatCompletionResult:
        client = self._anthropic()
        request_kwargs = self._anthropic_kwargs(messages, params)
        if tool:
            request_kwargs["tools"] = [
                {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            ]
            request_kwargs["tool_choice"] = {"type": "tool", "name": tool.name}

        logger.info("Anthropic message request", extra={"model": params.model, "tool": bool(tool)})
        try:
            response = client.messages.create(**request_kwargs)
        except anthropic.APITimeoutError as exc:
            logger.warning("Anthropic request timed out", extra={"model": params.model})
            raise LLMTimeoutError("Anthropic request timed out.") from exc
        except anthropic.APIError as exc:
            logger.exception("Anthropic request failed", extra={"model": params.model})
            raise LLMUpstreamError(f"Anthropic request failed: {exc}") from exc

        stop_reason = str(getattr(response, "stop_reason", None) or "")
        result = ChatCompletionResult(
            model=str(getattr(response, "model", None) or params.model).strip(),
            finish_reason="length" if stop_reason == "max_tokens" else stop_reason,
            usage=ChatUsage.from_mapping(getattr(response, "usage", None)),
        )
        text_parts: list[str] = []
        for block in response.content or []:
            block_type = getattr(block, "type", None)
            if block_type == "tool_use" and result.tool_arguments is None:
                result.tool_arguments = json.dumps(getattr(block, "input", None) or {})
            elif block_type == "text" and getattr(block, "text", None):
                text_parts.append(block.text)
        result.content = "".join(text_parts).strip()
        return result

    def _stream_with_anthropic(
        self,
        messages: list[dict[str, str]],
        params: LLMGenerationParams,
    ) -> Iterator[ChatStreamEvent]:
        client = self._anthropic()
        request_kwargs = self._anthropic_kwargs(messages, params)
        request_kwargs["stream"] = True

        logger.info("Anthropic stream request", extra={"model": params.model})
        try:
            stream = client.messages.create(**request_kwargs)
        except anthropic.APITimeoutError as exc:
            logger.warning("Anthropic stream timed out before opening", extra={"model": params.model})
            raise LLMTimeoutError("Anthropic request timed out.") from exc
        except anthropic.APIError as exc:
            logger.exception("Anthropic stream failed to open", extra={"model": params.model})
            raise LLMUpstreamError(f"Anthropic request failed: {exc}") from exc

        def _events() -> Iterator[ChatStreamEvent]:
            prompt_tokens = 0
            completion_tokens = 0
            with stream:
                for event in stream:
                    event_type = getattr(event, "type", None)
                    if event_type == "message_start":
                        usage = ChatUsage.from_mapping(getattr(event.message, "usage", None))
                        prompt_tokens = usage.prompt_tokens
                        continue
                    if event_type == "content_block_delta":
                        text = getattr(event.delta, "text", None)
                        if text:
                            yield ChatStreamEvent(text=text)
                        continue
                    if event_type == "message_delta":
                        usage = ChatUsage.from_mapping(getattr(event, "usage", None))
                        completion_tokens = usage.completion_tokens or completion_tokens
            if prompt_tokens or completion_tokens:
                yield ChatStreamEvent(
                    usage=ChatUsage(
                        prompt_tokens=prompt_tokens,
                        completion_tokens=completion_tokens,
                        total_tokens=prompt_tokens + completion_tokens,
                    )
                )

        return _events()

    # Images

    def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        size: str,
        quality: str,
        background: str,
        output_format: str,
    ) -> GeneratedImage:
        client = self._openai()
        logger.info("OpenAI image generation request", extra={"model": model, "size": size})
        try:
            response = client.images.generate(
                model=model,
                prompt=prompt,
                n=1,
                size=size,
                quality=quality,
                background=background,
                output_format=output_format,
            )
        except openai.APITimeoutError as exc:
            logger.warning("OpenAI image generation timed out", extra={"model": model})
            raise LLMTimeoutError("OpenAI image request timed out.") from exc
        except openai.APIError as exc:
            logger.exception("OpenAI image generation failed", extra={"model": model})
            raise LLMUpstreamError(f"OpenAI image request failed: {exc}") from exc

        data = getattr(response, "data", None) or []
        image_base64 = getattr(data[0], "b64_json", None) if data else None
        if not image_base64:
            raise LLMUpstreamError("OpenAI returned no image data.")
        try:
            image_bytes = base64.b64decode(image_base64)
        except (binascii.Error, ValueError) as exc:
            raise LLMUpstreamError("OpenAI returned undecodable image data.") from exc
        return GeneratedImage(
            data=image_bytes,
            model=model,
            usage=ChatUsage.from_mapping(getattr(response, "usage", None)),
        )
