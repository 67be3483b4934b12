"""
Cost-aware LLM client for the OpenAI chat completions API.
Tracks API calls, token usage, and costs per client.

Features:
- Plain, tool-calling and JSON-mode completions
- Streaming completions with tool-call reassembly
- Token and cost accounting with an audit trail
- No automatic retries: callers decide whether to re-trigger
"""

import time
from collections import deque
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from openai import OpenAI, OpenAIError

from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

# --- Pricing Configuration ---
PRICING = {
    "gpt-4o": {
        "input": 2.50 / 1_000_000,    # $2.50 per 1M input tokens
        "output": 10.00 / 1_000_000,  # $10.00 per 1M output tokens
        "display_name": "GPT-4o (Chat)"
    },
    "gpt-4o-mini": {
        "input": 0.15 / 1_000_000,    # $0.15 per 1M input tokens
        "output": 0.60 / 1_000_000,   # $0.60 per 1M output tokens
        "display_name": "GPT-4o mini (Sweep)"
    },
}


MAX_CALL_RECORDS = 500
RECENT_CALLS_REPORTED = 10


class CostTracker:
    """Tracks and reports API call costs."""

    def __init__(self):
        self.total_cost = 0.0
        self.call_count = 0
        self.tokens_used = {"input": 0, "output": 0}
        # Most recent calls only; the totals above cover the whole process
        self.calls = deque(maxlen=MAX_CALL_RECORDS)

    def add_call(self, model: str, input_tokens: int, output_tokens: int,
                 duration: float = 0.0) -> float:
        """Record an API call and return its cost."""
        pricing = PRICING.get(model, {})
        if not pricing:
            logger.debug(f"No pricing for model {model}. Using zero cost.")

        input_cost = input_tokens * pricing.get("input", 0)
        output_cost = output_tokens * pricing.get("output", 0)
        total_cost = input_cost + output_cost

        self.total_cost += total_cost
        self.call_count += 1
        self.tokens_used["input"] += input_tokens
        self.tokens_used["output"] += output_tokens

        self.calls.append({
            "timestamp": datetime.now().isoformat(),
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_cost": round(total_cost, 8),
            "duration_seconds": round(duration, 2)
        })
        logger.info(f"[COST] {model} | ${total_cost:.6f} | "
                    f"{input_tokens}→{output_tokens} tokens")
        return total_cost

    def get_summary(self) -> Dict[str, Any]:
        return {
            "total_cost": round(self.total_cost, 6),
            "call_count": self.call_count,
            "avg_cost_per_call": round(self.total_cost / max(1, self.call_count), 6),
            "tokens_used": dict(self.tokens_used),
            "recent_calls": list(self.calls)[-RECENT_CALLS_REPORTED:]
        }


def _tool_call_to_dict(tool_call) -> Dict[str, Any]:
    return {
        "id": tool_call.id,
        "type": "function",
        "function": {
            "name": tool_call.function.name,
            "arguments": tool_call.function.arguments or "",
        },
    }


class OpenAIChatClient:
    """
    Thin wrapper around ``openai.OpenAI`` bound to one model.

    Usage:
        client = OpenAIChatClient(model="gpt-4o-mini")
        result = client.complete(messages, json_mode=True)
        print(result['content'], result['cost'])
    """

    def __init__(self, model: str = "gpt-4o", api_key: str = None, base_url: str = None,
                 timeout: float = 120, max_retries: int = 0, client: OpenAI = None):
        self.model_name = model
        self.cost_tracker = CostTracker()
        if client is None:
            kwargs = {"timeout": timeout, "max_retries": max_retries}
            if api_key:
                kwargs["api_key"] = api_key
            if base_url:
                kwargs["base_url"] = base_url
            try:
                client = OpenAI(**kwargs)
            except OpenAIError as e:
                # Raised when no API key is configured at all
                raise UpstreamFailure(f"OpenAI client could not be configured: {e}")
        self.client = client
        logger.info(f"OpenAIChatClient initialized: {model}")

    def _request_kwargs(self, messages, tools, json_mode, temperature) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.model_name, "messages": messages}
        if tools:
            kwargs["tools"] = tools
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    def complete(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict]] = None,
                 json_mode: bool = False, temperature: float = None) -> Dict[str, Any]:
        """
        Send a non-streaming chat request and track its cost.

        Returns:
            {
                'content': str,
                'tool_calls': [{'id', 'type', 'function': {'name', 'arguments'}}],
                'model': str,
                'input_tokens': int,
                'output_tokens': int,
                'cost': float,
                'duration_seconds': float
            }

        Raises:
            UpstreamFailure: the API call failed or returned no choices.
        """
        start_time = time.time()
        try:
            response = self.client.chat.completions.create(
                **self._request_kwargs(messages, tools, json_mode, temperature)
            )
        except OpenAIError as e:
            logger.error(f"OpenAI call failed ({self.model_name}): {e}")
            raise UpstreamFailure(f"OpenAI API call failed: {e}")

        if not response.choices:
            raise UpstreamFailure("OpenAI returned no choices.")
        message = response.choices[0].message
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        duration = time.time() - start_time
        cost = self.cost_tracker.add_call(self.model_name, input_tokens, output_tokens, duration)

        return {
            "content": message.content or "",
            "tool_calls": [_tool_call_to_dict(tc) for tc in (message.tool_calls or [])],
            "model": self.model_name,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost": cost,
            "duration_seconds": duration,
        }

    def stream(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict]] = None,
               temperature: float = None) -> Iterator[Dict[str, Any]]:
        """
        Stream a chat request.

        Yields ``{'type': 'token', 'content': delta}`` for each text delta and a
        final ``{'type': 'done', 'content': full_text, 'tool_calls': [...]}``.
        """
        start_time = time.time()
        kwargs = self._request_kwargs(messages, tools, False, temperature)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        content_parts: List[str] = []
        tool_calls: Dict[int, Dict[str, Any]] = {}
        input_tokens = output_tokens = 0
        try:
            for chunk in self.client.chat.completions.create(**kwargs):
                if chunk.usage:
                    input_tokens = chunk.usage.prompt_tokens
                    output_tokens = chunk.usage.completion_tokens
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    content_parts.append(delta.content)
                    yield {"type": "token", "content": delta.content}
                for tc in delta.tool_calls or []:
                    entry = tool_calls.setdefault(tc.index, {
                        "id": None,
                        "type": "function",
                        "function": {"name": "", "arguments": ""},
                    })
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["function"]["name"] += tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["function"]["arguments"] += tc.function.arguments
        except OpenAIError as e:
            logger.error(f"OpenAI stream failed ({self.model_name}): {e}")
            raise UpstreamFailure(f"OpenAI API call failed: {e}")

        self.cost_tracker.add_call(self.model_name, input_tokens, output_tokens,
                                   time.time() - start_time)
        yield {
            "type": "done",
            "content": "".join(content_parts),
            "tool_calls": [tool_calls[index] for index in sorted(tool_calls)],
        }

    def get_cost_summary(self) -> Dict[str, Any]:
        return self.cost_tracker.get_summary()

    def get_model_info(self) -> Dict[str, Any]:
        """Get model pricing info."""
        pricing = PRICING.get(self.model_name, {})
        return {
            "model": self.model_name,
            "display_name": pricing.get("display_name", self.model_name),
            "input_price_per_1m_tokens": round(pricing.get("input", 0) * 1_000_000, 2),
            "output_price_per_1m_tokens": round(pricing.get("output", 0) * 1_000_000, 2),
            "total_calls": self.cost_tracker.call_count,
            "total_cost": round(self.cost_tracker.total_cost, 6)
        }
