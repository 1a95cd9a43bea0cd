"""
UnifiedModelClient - BYOK adapter over the provider SDKs.
Supports OpenAI, OpenRouter, DeepSeek, Gemini, and Anthropic, both as a single
completion call and as an incremental text stream.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import google.generativeai as genai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..config import LLMConfiguration, LLMProvider
from ..core.errors import ProviderNotConfiguredError


@dataclass
class ModelResponse:
    """Unified response from any LLM provider."""
    content: str
    model: str
    provider: LLMProvider
    usage: Dict[str, int]
    finish_reason: str


StreamItem = Union[str, ModelResponse]

JSON_ONLY_INSTRUCTION = "\n\nYou MUST respond with valid JSON only, no other text."

OPENAI_COMPATIBLE = (LLMProvider.OPENAI, LLMProvider.OPENROUTER, LLMProvider.DEEPSEEK)


def _usage(prompt_tokens: int, completion_tokens: int) -> Dict[str, int]:
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }


def _split_system(messages: List[Dict[str, str]]) -> Tuple[str, List[Dict[str, str]]]:
    """Separate the system message from the chat turns."""
    system_message = ""
    chat_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_message = msg["content"]
        else:
            chat_messages.append(msg)
    return system_message, chat_messages


def _gemini_prompt(messages: List[Dict[str, str]]) -> str:
    system_content, chat_messages = _split_system(messages)
    user_content = ""
    for msg in chat_messages:
        if msg["role"] == "assistant":
            user_content += f"\n\nAssistant: {msg['content']}"
        else:
            user_content += f"\n\n{msg['content']}" if user_content else msg["content"]
    return f"{system_content}\n\n---\n\n{user_content}"


class UnifiedModelClient:
    """
    Routes chat requests to the configured provider.
    SDK clients are created lazily on first use and reused afterwards.
    """

    def __init__(self, config: LLMConfiguration):
        self.config = config
        self._openai_clients: Dict[LLMProvider, AsyncOpenAI] = {}
        self._anthropic_client: Optional[AsyncAnthropic] = None
        self._gemini_configured = False

    def _get_openai_compatible_client(self, provider: LLMProvider) -> AsyncOpenAI:
        """Get or create an OpenAI-compatible client (OpenAI, OpenRouter, DeepSeek)."""
        if provider not in self._openai_clients:
            provider_config = self.config.get_provider_config(provider)
            if not provider_config:
                raise ProviderNotConfiguredError(f"{provider.value} configuration not provided")
            self._openai_clients[provider] = AsyncOpenAI(
                api_key=provider_config.api_key.get_secret_value(),
                base_url=provider_config.base_url,
                timeout=self.config.timeout_seconds,
            )
        return self._openai_clients[provider]

    def _get_anthropic_client(self) -> AsyncAnthropic:
        if self._anthropic_client is None:
            if not self.config.claude:
                raise ProviderNotConfiguredError("Claude configuration not provided")
            self._anthropic_client = AsyncAnthropic(
                api_key=self.config.claude.api_key.get_secret_value(),
                timeout=self.config.timeout_seconds,
            )
        return self._anthropic_client

    def _configure_gemini(self) -> None:
        if not self._gemini_configured:
            if not self.config.gemini:
                raise ProviderNotConfiguredError("Gemini configuration not provided")
            genai.configure(api_key=self.config.gemini.api_key.get_secret_value())
            self._gemini_configured = True

    # ------------------------------------------------------------------
    # Single-shot completion
    # ------------------------------------------------------------------

    async def create_chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        provider: LLMProvider,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, str]] = None,
    ) -> ModelResponse:
        """
        Create a chat completion using the specified provider.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model identifier
            provider: LLM provider to use
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            response_format: Optional format specification (e.g., {"type": "json_object"})

        Returns:
            ModelResponse with unified response format
        """
        provider = LLMProvider(provider)
        if provider in OPENAI_COMPATIBLE:
            return await self._openai_completion(
                provider, messages, model, temperature, max_tokens, response_format
            )
        elif provider == LLMProvider.CLAUDE:
            return await self._anthropic_completion(
                messages, model, temperature, max_tokens, response_format
            )
        elif provider == LLMProvider.GEMINI:
            return await self._gemini_completion(
                messages, model, temperature, max_tokens, response_format
            )
        else:
            raise ValueError(f"Unsupported provider: {provider}")

    async def _openai_completion(
        self,
        provider: LLMProvider,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        response_format: Optional[Dict[str, str]],
    ) -> ModelResponse:
        client = self._get_openai_compatible_client(provider)

        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if response_format:
            kwargs["response_format"] = response_format

        response = await client.chat.completions.create(**kwargs)

        return ModelResponse(
            content=response.choices[0].message.content or "",
            model=model,
            provider=provider,
            usage=_usage(
                response.usage.prompt_tokens if response.usage else 0,
                response.usage.completion_tokens if response.usage else 0,
            ),
            finish_reason=response.choices[0].finish_reason or "stop",
        )

    async def _anthropic_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        response_format: Optional[Dict[str, str]],
    ) -> ModelResponse:
        client = self._get_anthropic_client()
        system_message, chat_messages = _split_system(messages)

        if response_format and response_format.get("type") == "json_object":
            system_message += JSON_ONLY_INSTRUCTION

        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens or 4096,
            system=system_message,
            messages=chat_messages,
            temperature=temperature,
        )

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

        return ModelResponse(
            content=content,
            model=model,
            provider=LLMProvider.CLAUDE,
            usage=_usage(
                response.usage.input_tokens if response.usage else 0,
                response.usage.output_tokens if response.usage else 0,
            ),
            finish_reason=response.stop_reason or "stop",
        )

    async def _gemini_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        response_format: Optional[Dict[str, str]],
    ) -> ModelResponse:
        self._configure_gemini()

        full_prompt = _gemini_prompt(messages)
        if response_format and response_format.get("type") == "json_object":
            full_prompt += JSON_ONLY_INSTRUCTION

        gemini_model = genai.GenerativeModel(model)
        response = await gemini_model.generate_content_async(
            full_prompt,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
        )
        metadata = getattr(response, "usage_metadata", None)

        return ModelResponse(
            content=response.text or "",
            model=model,
            provider=LLMProvider.GEMINI,
            usage=_usage(
                getattr(metadata, "prompt_token_count", 0) or 0,
                getattr(metadata, "candidates_token_count", 0) or 0,
            ),
            finish_reason="stop",
        )

    # ------------------------------------------------------------------
    # Streaming completion
    # ------------------------------------------------------------------

    async def stream_chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        provider: LLMProvider,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamItem]:
        """
        Stream a chat completion.

        Yields text deltas (str) as they arrive, then exactly one
        ModelResponse carrying the full text, usage and finish reason.
        """
        provider = LLMProvider(provider)
        if provider in OPENAI_COMPATIBLE:
            stream = self._openai_stream(provider, messages, model, temperature, max_tokens)
        elif provider == LLMProvider.CLAUDE:
            stream = self._anthropic_stream(messages, model, temperature, max_tokens)
        elif provider == LLMProvider.GEMINI:
            stream = self._gemini_stream(messages, model, temperature, max_tokens)
        else:
            raise ValueError(f"Unsupported provider: {provider}")

        async for item in stream:
            yield item

    async def _openai_stream(
        self,
        provider: LLMProvider,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> AsyncIterator[StreamItem]:
        client = self._get_openai_compatible_client(provider)

        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        parts: List[str] = []
        usage = _usage(0, 0)
        finish_reason = "stop"

        stream = await client.chat.completions.create(**kwargs)
        async for chunk in stream:
            if chunk.usage:
                usage = _usage(chunk.usage.prompt_tokens or 0, chunk.usage.completion_tokens or 0)
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            if choice.finish_reason:
                finish_reason = choice.finish_reason
            delta = choice.delta.content if choice.delta else None
            if delta:
                parts.append(delta)
                yield delta

        yield ModelResponse(
            content="".join(parts),
            model=model,
            provider=provider,
            usage=usage,
            finish_reason=finish_reason,
        )

    async def _anthropic_stream(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> AsyncIterator[StreamItem]:
        client = self._get_anthropic_client()
        system_message, chat_messages = _split_system(messages)

        parts: List[str] = []
        async with client.messages.stream(
            model=model,
            max_tokens=max_tokens or 4096,
            system=system_message,
            messages=chat_messages,
            temperature=temperature,
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    parts.append(text)
                    yield text
            final = await stream.get_final_message()

        yield ModelResponse(
            content="".join(parts),
            model=model,
            provider=LLMProvider.CLAUDE,
            usage=_usage(
                final.usage.input_tokens if final.usage else 0,
                final.usage.output_tokens if final.usage else 0,
            ),
            finish_reason=final.stop_reason or "stop",
        )

    async def _gemini_stream(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> AsyncIterator[StreamItem]:
        self._configure_gemini()

        gemini_model = genai.GenerativeModel(model)
        response = await gemini_model.generate_content_async(
            _gemini_prompt(messages),
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
            stream=True,
        )

        parts: List[str] = []
        async for chunk in response:
            text = "".join(part.text for part in chunk.parts) if chunk.parts else ""
            if text:
                parts.append(text)
                yield text

        metadata = getattr(response, "usage_metadata", None)
        yield ModelResponse(
            content="".join(parts),
            model=model,
            provider=LLMProvider.GEMINI,
            usage=_usage(
                getattr(metadata, "prompt_token_count", 0) or 0,
                getattr(metadata, "candidates_token_count", 0) or 0,
            ),
            finish_reason="stop",
        )

    async def close(self) -> None:
        """Release HTTP connections held by the SDK clients."""
        for client in self._openai_clients.values():
            await client.close()
        self._openai_clients.clear()
        if self._anthropic_client is not None:
            await self._anthropic_client.close()
            self._anthropic_client = None
