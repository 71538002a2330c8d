"""
Chat completion with Claude, and post-processing of the assistant's reply.

The assistant may append one chart to a reply using the delimiter protocol:

    ---CHART_DATA---
    {"type": "bar", "title": "...", "data": [{"name": "...", "value": 1}]}
    ---END_CHART---
"""

import json
import re
from typing import List, Optional

import structlog
from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from rental_rag.circuit_breaker import CircuitBreaker, chat_breaker
from rental_rag.config import settings
from rental_rag.errors import MalformedChartError, ProviderError
from rental_rag.models import ChartSpec, ChatCompletion, ChatMessage

logger = structlog.get_logger(__name__)

CHART_PATTERN = re.compile(r"---CHART_DATA---\n?(.*?)\n?---END_CHART---", re.DOTALL)


class ProcessedReply(BaseModel):
    """Visible reply text plus the chart parsed out of it, if any."""

    text: str
    chart: Optional[ChartSpec] = None


def parse_chart_spec(raw: str) -> ChartSpec:
    """
    Parse the JSON body of a chart block.

    Raises:
        MalformedChartError: Body is not JSON or does not describe a chart
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedChartError(f"Chart block is not valid JSON: {e}") from e
    try:
        return ChartSpec.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedChartError(f"Chart block does not match the chart schema: {e}") from e


def extract_chart(text: str, strip_malformed: Optional[bool] = None) -> ProcessedReply:
    """
    Split a model reply into visible text and an optional chart.

    The first chart block is removed from the visible text. A block that fails
    to parse yields no chart, and is removed too unless `strip_malformed` is
    False, in which case the raw reply is returned unchanged. If removing the
    block leaves nothing, the raw reply is kept as the text.

    Args:
        text: Raw model reply
        strip_malformed: Defaults to settings.chart_strip_malformed
    """
    if strip_malformed is None:
        strip_malformed = settings.chart_strip_malformed

    match = CHART_PATTERN.search(text)
    if match is None:
        return ProcessedReply(text=text)

    chart = None
    try:
        chart = parse_chart_spec(match.group(1).strip())
    except MalformedChartError as e:
        logger.warning("chart_parse_failed", error=str(e), stripped=strip_malformed)
        if not strip_malformed:
            return ProcessedReply(text=text)

    visible = (text[:match.start()] + text[match.end():]).strip()
    return ProcessedReply(text=visible or text.strip(), chart=chart)


def to_anthropic_messages(messages: List[ChatMessage]):
    """
    Convert provider-neutral messages to Anthropic's (system, messages) form.

    System turns are joined into the system prompt in order; consecutive turns
    with the same role are merged since the Messages API expects alternation.
    Leading assistant turns are dropped: the first message must be the user's.
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    turns: List[dict] = []
    for message in messages:
        if message.role == "system":
            continue
        if turns and turns[-1]["role"] == message.role:
            turns[-1]["content"] = f"{turns[-1]['content']}\n\n{message.content}"
        else:
            turns.append({"role": message.role, "content": message.content})
    while turns and turns[0]["role"] == "assistant":
        turns.pop(0)
    return "\n\n".join(system_parts), turns


class AnthropicChatProvider:
    """Single-shot chat completions against the Anthropic Messages API."""

    provider_name = "anthropic"

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.timeout = timeout or settings.chat_timeout_seconds
        # retries are the caller's decision, not the SDK's
        self.client = client or AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=self.timeout,
            max_retries=0,
        )
        self.model = model or settings.chat_model
        self.breaker = breaker or chat_breaker

    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> ChatCompletion:
        """
        Generate one reply for an ordered list of messages.

        Raises:
            ProviderError: API error, connection failure, or timeout
        """
        system, turns = to_anthropic_messages(messages)
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens or settings.chat_max_tokens,
            "temperature": settings.chat_temperature if temperature is None else temperature,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system

        response = await self.breaker.call(self._create, kwargs)

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }
        logger.info("chat_completion", model=response.model, **usage)
        return ChatCompletion(content=content, model=response.model, usage=usage)

    async def _create(self, kwargs: dict):
        try:
            return await self.client.messages.create(**kwargs)
        except APITimeoutError as e:
            raise ProviderError(
                f"Chat completion timed out after {self.timeout}s",
                provider=self.provider_name,
                timed_out=True,
            ) from e
        except APIStatusError as e:
            raise ProviderError(e.message, status=e.status_code, provider=self.provider_name) from e
        except APIConnectionError as e:
            raise ProviderError(str(e), provider=self.provider_name) from e
