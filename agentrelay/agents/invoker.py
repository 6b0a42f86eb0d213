"""Model invocation boundary — runs a worker turn against Anthropic.

Each turn streams text fragments through the context as they arrive.
Handoffs and structured output are expressed as tools the model may call:

    transfer_to_<target>   one per outgoing edge; args = edge input contract
                           (or a single ``message`` string)
    submit_<contract>      when the worker declares an output contract

Any other tool call is a regular capability, executed through
``context.call_tool`` before the model is asked again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel, Field, create_model

from agentrelay.agents.worker import WorkerResult
from agentrelay.errors import InvocationTimeout, UpstreamFailure
from agentrelay.tools import resolve_tools

if TYPE_CHECKING:
    from agentrelay.agents.context import InvocationContext
    from agentrelay.agents.graph import HandoffEdge
    from agentrelay.agents.worker import Worker
    from agentrelay.contracts import OutputContract

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
HANDOFF_PREFIX = "transfer_to_"
SUBMIT_PREFIX = "submit_"


def _text_of(content: Any) -> str:
    """Normalize message content — Anthropic can return a list of blocks or a string.

    Only text blocks count; tool-use blocks and partial tool JSON are skipped.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


def render_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, BaseModel):
        return payload.model_dump_json()
    return json.dumps(payload, default=str)


def _handoff_schema(edge: HandoffEdge) -> type[BaseModel]:
    description = edge.description or f"Hand off control to {edge.target}."
    if edge.input_contract is not None:
        model = edge.input_contract.as_model(f"{HANDOFF_PREFIX}{edge.target}")
        model.__doc__ = description
        return model
    return create_model(
        f"{HANDOFF_PREFIX}{edge.target}",
        __doc__=description,
        message=(str, Field(..., description=f"The input to send to {edge.target}.")),
    )


def _submit_schema(contract: OutputContract) -> type[BaseModel]:
    return contract.as_model(f"{SUBMIT_PREFIX}{contract.name}")


class ChatModelInvoker:
    """Worker invoker backed by ``ChatAnthropic``."""

    def __init__(
        self,
        default_model: str = DEFAULT_MODEL,
        max_tokens: int = 4096,
        timeout: float | None = None,
        api_key: str | None = None,
    ):
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._api_key = api_key

    def _get_llm(self, model: str) -> ChatAnthropic:
        """Create an Anthropic LLM instance."""
        api_key = self._api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise UpstreamFailure("ANTHROPIC_API_KEY environment variable is not set")
        return ChatAnthropic(model=model, max_tokens=self.max_tokens, api_key=api_key)

    async def __call__(self, worker: Worker, payload: Any, context: InvocationContext) -> WorkerResult:
        try:
            if self.timeout:
                return await asyncio.wait_for(self._run(worker, payload, context), self.timeout)
            return await self._run(worker, payload, context)
        except asyncio.TimeoutError as e:
            raise InvocationTimeout(f"Worker '{worker.name}' did not answer within {self.timeout}s", cause=e) from e

    async def _run(self, worker: Worker, payload: Any, context: InvocationContext) -> WorkerResult:
        tools = resolve_tools(list(worker.tools)) if worker.tools else []
        handoffs = {f"{HANDOFF_PREFIX}{edge.target}": edge for edge in context.handoffs}
        bindings: list[Any] = list(tools) + [_handoff_schema(edge) for edge in context.handoffs]
        submit_name = None
        if worker.output_contract is not None:
            submit_name = f"{SUBMIT_PREFIX}{worker.output_contract.name}"
            bindings.append(_submit_schema(worker.output_contract))

        llm = self._get_llm(worker.model or self.default_model)
        if bindings:
            llm = llm.bind_tools(bindings, tool_choice="any" if worker.require_tool else None)

        messages = [
            SystemMessage(content=worker.instructions),
            *context.history,
            HumanMessage(content=render_payload(payload)),
        ]

        while True:
            response = None
            async for chunk in llm.astream(messages):
                await context.emit(_text_of(chunk.content))
                response = chunk if response is None else response + chunk
            if response is None:
                raise UpstreamFailure(f"Worker '{worker.name}' received an empty response")

            tool_calls = getattr(response, "tool_calls", None) or []
            text = _text_of(response.content)

            for call in tool_calls:
                if call["name"] in handoffs:
                    edge = handoffs[call["name"]]
                    args = call.get("args") or {}
                    handoff_payload = args if edge.input_contract is not None else args.get("message", "")
                    return WorkerResult(text=text or None, handoff=edge.target, payload=handoff_payload)
                if call["name"] == submit_name:
                    return WorkerResult(text=text or None, structured=dict(call.get("args") or {}))

            if not tool_calls:
                # With an output contract the engine parses JSON out of the text.
                return WorkerResult(text=text)

            messages.append(response)
            for call in tool_calls:
                result = await context.call_tool(call["name"], call.get("args") or {})
                messages.append(ToolMessage(content=str(result), tool_call_id=call["id"]))
