"""
Generation Agent for Inkwell
Wraps one pipeline role around the unified model client: builds the role's
system prompt, streams the completion and reports token usage.
"""

import asyncio
import inspect
import logging
import random
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..config import LLMProvider
from ..core.errors import AgentExecutionError, ProviderNotConfiguredError
from ..models import AgentContext, AgentResult, ChatMessage, TokenUsage
from ..services.model_client import ModelResponse, UnifiedModelClient

logger = logging.getLogger("inkwell.agents")

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]
MessageLike = Union[ChatMessage, Dict[str, str]]

RETRYABLE_PATTERNS = [
    "429", "rate limit", "rate_limit", "ratelimit",
    "500", "502", "503", "504", "529",
    "timeout", "timed out", "connection",
    "overloaded", "overload", "capacity",
    "temporarily unavailable", "service unavailable",
    "internal server error", "bad gateway", "gateway timeout",
]

NON_RETRYABLE_PATTERNS = [
    "401", "403", "400",
    "invalid api key", "invalid_api_key", "authentication",
    "unauthorized", "forbidden", "invalid model",
    "model not found", "does not exist",
]


def build_system_prompt(context: AgentContext) -> str:
    """Role instruction, then custom instructions, then style profile."""
    sections = [context.system_prompt.strip()]
    if context.custom_instructions and context.custom_instructions.strip():
        sections.append(f"## Project-specific instructions\n{context.custom_instructions.strip()}")
    if context.style_profile and context.style_profile.strip():
        sections.append(f"## Style profile\n{context.style_profile.strip()}")
    return "\n\n".join(sections)


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is transient (rate limit, timeout, 5xx)."""
    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in error_str:
            return False

    for pattern in RETRYABLE_PATTERNS:
        if pattern in error_str:
            return True

    for rtype in ("timeout", "connection", "network", "ratelimit", "overloaded"):
        if rtype in error_type:
            return True

    return False


class GenerationAgent:
    """
    Executes one role against the configured provider.

    Transient provider failures are retried with exponential backoff, but only
    while no text has been streamed yet; once a chunk has reached the caller a
    failure is final. Every failure surfaces as AgentExecutionError.
    """

    def __init__(
        self,
        model_client: UnifiedModelClient,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.model_client = model_client
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay

    def _build_messages(
        self, context: AgentContext, messages: Sequence[MessageLike]
    ) -> List[Dict[str, str]]:
        request = [{"role": "system", "content": build_system_prompt(context)}]
        for message in messages:
            if isinstance(message, ChatMessage):
                request.append({"role": message.role, "content": message.content})
            else:
                request.append({"role": message["role"], "content": message["content"]})
        return request

    async def _backoff(self, attempt: int, role: str, error: Optional[Exception]) -> None:
        # 1x, 3x, 9x the base delay plus jitter
        delay = self.retry_base_delay * (3 ** (attempt - 1)) + random.uniform(0, self.retry_base_delay)
        logger.info(
            f"[GenerationAgent] Retry attempt {attempt + 1}/{self.max_retries} for {role} "
            f"after {delay:.1f}s delay (last error: {error})"
        )
        if delay > 0:
            await asyncio.sleep(delay)

    async def stream(
        self, context: AgentContext, messages: Sequence[MessageLike]
    ) -> AsyncIterator[Union[str, AgentResult]]:
        """
        Yield text chunks as they arrive, then a single AgentResult.

        Raises:
            AgentExecutionError: the completion service failed
        """
        role = context.role.value
        try:
            provider = LLMProvider(context.provider)
        except ValueError as e:
            raise AgentExecutionError(
                f"Unknown provider '{context.provider}' for {role}", role=role, provider=context.provider
            ) from e

        request = self._build_messages(context, messages)
        logger.info(
            f"[GenerationAgent] Role: {role}, Provider: {provider.value}, Model: '{context.model}', "
            f"max_tokens: {context.max_tokens}"
        )

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            if attempt > 0:
                await self._backoff(attempt, role, last_error)

            emitted = False
            final: Optional[ModelResponse] = None
            try:
                async for item in self.model_client.stream_chat_completion(
                    messages=request,
                    model=context.model,
                    provider=provider,
                    temperature=context.temperature,
                    max_tokens=context.max_tokens,
                ):
                    if isinstance(item, ModelResponse):
                        final = item
                    elif item:
                        emitted = True
                        yield item
            except ProviderNotConfiguredError as e:
                raise AgentExecutionError(str(e), role=role, provider=provider.value) from e
            except Exception as e:
                last_error = e
                retryable = is_retryable_error(e)
                logger.warning(
                    f"[GenerationAgent] {role} attempt {attempt + 1}/{self.max_retries} failed: {e}"
                )
                if emitted or not retryable or attempt == self.max_retries - 1:
                    logger.error(f"[GenerationAgent] Giving up on {role}: {e}")
                    raise AgentExecutionError(
                        f"{role} generation failed: {e}",
                        role=role,
                        provider=provider.value,
                        retryable=retryable,
                    ) from e
                continue

            if final is None:
                raise AgentExecutionError(
                    f"{role} generation returned a malformed response (stream ended without completion)",
                    role=role,
                    provider=provider.value,
                )

            if final.finish_reason in ("length", "max_tokens"):
                logger.warning(f"[GenerationAgent] {role} response was TRUNCATED (finish_reason={final.finish_reason})")

            yield AgentResult(
                role=context.role,
                text=final.content,
                token_usage=TokenUsage(
                    input_tokens=final.usage.get("prompt_tokens", 0),
                    output_tokens=final.usage.get("completion_tokens", 0),
                ),
                stop_reason=final.finish_reason,
            )
            return

    async def execute(
        self,
        context: AgentContext,
        messages: Sequence[MessageLike],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> AgentResult:
        """Run the role to completion, forwarding each chunk to on_chunk."""
        result: Optional[AgentResult] = None
        async for item in self.stream(context, messages):
            if isinstance(item, AgentResult):
                result = item
            elif on_chunk is not None:
                outcome: Any = on_chunk(item)
                if inspect.isawaitable(outcome):
                    await outcome

        if result is None:
            raise AgentExecutionError(
                f"{context.role.value} generation produced no result", role=context.role.value
            )
        return result
