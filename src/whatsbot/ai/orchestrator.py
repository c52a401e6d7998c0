"""Bounded tool-calling loop over the chat-completions API."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable

from whatsbot.ai.client import LLMClient
from whatsbot.ai.conversation import build_messages
from whatsbot.ai.tools.base import Tool, ToolContext
from whatsbot.core.errors import PermanentExternalError, TransientExternalError
from whatsbot.log import get_logger
from whatsbot.storage.models import AssistantTurn, ConversationRecord, SystemNote, ToolCall, ToolTurn, UserTurn
from whatsbot.storage.transcript import repair
from whatsbot.transport.models import OutboundPlan

logger = get_logger(__name__)

MAX_ITERATIONS = 4
FALLBACK_TEXT = "I couldn't complete that — please try again"


@dataclass
class LoopContext:
    """Deadline, per-call timeouts and cancellation for one loop run."""

    deadline: float
    llm_timeout: float = 30.0
    tool_timeout: float = 15.0
    max_iterations: int = MAX_ITERATIONS
    cancel_event: asyncio.Event | None = None
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def start(cls, budget: float, clock: Callable[[], float] = time.monotonic, **kwargs) -> LoopContext:
        return cls(deadline=clock() + budget, clock=clock, **kwargs)

    def remaining(self) -> float:
        return self.deadline - self.clock()

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class ToolLoopRequest:
    system_prompt: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 1024
    tools: list[Tool] = field(default_factory=list)


@dataclass
class LoopResult:
    text: str
    iterations: int
    completed: bool
    repairs: int = 0


def _current_input(record: ConversationRecord) -> UserTurn | None:
    for turn in reversed(record.turns):
        if isinstance(turn, UserTurn):
            return turn
    return None


def _repair_transcript(record: ConversationRecord, current_input: UserTurn | None) -> bool:
    turns, changed = repair(record.turns, current_input)
    if not changed:
        return False
    note = SystemNote(text="Earlier tool-call history was incomplete and has been trimmed.")
    if current_input is not None and turns and turns[-1] == current_input:
        turns.insert(len(turns) - 1, note)
    else:
        turns.append(note)
    record.turns = turns
    logger.warning("transcript_repaired", tenant_id=record.tenant_id, session_id=record.session_id)
    return True


def _fallback(record: ConversationRecord, iterations: int, repairs: int) -> LoopResult:
    record.add_turn(AssistantTurn(text=FALLBACK_TEXT))
    return LoopResult(text=FALLBACK_TEXT, iterations=iterations, completed=False, repairs=repairs)


async def _execute_one(
    call: ToolCall, tools: dict[str, Tool], context: ToolContext, loop: LoopContext
) -> tuple[str, OutboundPlan]:
    plan = OutboundPlan()
    if loop.cancelled():
        return "[Cancelled]", plan
    tool = tools.get(call.name)
    if tool is None:
        return f"Error: unknown tool '{call.name}'", plan
    scoped = ToolContext(tenant=context.tenant, user=context.user, plan=plan)
    timeout = max(0.0, min(loop.tool_timeout, loop.remaining()))
    try:
        result = await asyncio.wait_for(tool.execute(scoped, **call.arguments), timeout=timeout)
        return result, plan
    except asyncio.TimeoutError:
        logger.warning("tool_timeout", tool=call.name, timeout=timeout)
        return f"Error: {call.name} timed out", OutboundPlan()
    except PermanentExternalError as e:
        logger.warning("tool_rejected", tool=call.name, detail=e.detail)
        return f"Error executing {call.name}: {e.detail}", OutboundPlan()
    except Exception as e:
        logger.error("tool_execution_error", tool=call.name, error=str(e))
        return f"Error executing {call.name}: {e}", OutboundPlan()


async def run_tool_loop(
    llm: LLMClient,
    record: ConversationRecord,
    request: ToolLoopRequest,
    context: ToolContext,
    loop: LoopContext,
) -> LoopResult:
    """Run model/tool rounds until the model answers with text.

    Assistant and tool turns are appended to ``record``; messages the tools
    emit are appended to ``context.plan`` in tool-call order. Returns the
    fallback text when the iteration bound or the wall-clock budget is hit.
    """
    tool_defs = [t.to_api_dict() for t in request.tools]
    tools = {t.name: t for t in request.tools}
    current_input = _current_input(record)
    iterations = 0
    repairs = 0

    while iterations < loop.max_iterations:
        if loop.cancelled():
            logger.info("tool_loop_cancelled", round=iterations)
            return _fallback(record, iterations, repairs)
        if loop.remaining() <= 0:
            logger.warning("tool_loop_budget_exhausted", round=iterations)
            return _fallback(record, iterations, repairs)

        if _repair_transcript(record, current_input):
            repairs += 1
        messages = build_messages(record.turns, request.system_prompt)

        try:
            response = await asyncio.wait_for(
                llm.chat(
                    messages=messages,
                    model=request.model,
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                    tools=tool_defs or None,
                ),
                timeout=max(0.0, min(loop.llm_timeout, loop.remaining())),
            )
        except asyncio.TimeoutError as e:
            if loop.remaining() <= 0:
                logger.warning("tool_loop_budget_exhausted", round=iterations)
                return _fallback(record, iterations, repairs)
            raise TransientExternalError("LLM call timed out") from e
        iterations += 1

        if not response.tool_calls:
            text = response.text.strip() or FALLBACK_TEXT
            record.add_turn(AssistantTurn(text=text))
            logger.info("tool_loop_completed", rounds=iterations, tokens_out=response.output_tokens)
            return LoopResult(text=text, iterations=iterations, completed=True, repairs=repairs)

        calls = tuple(response.tool_calls)
        record.add_turn(AssistantTurn(text=response.text or None, tool_calls=calls))
        logger.info("tool_calls_requested", round=iterations, tools=[c.name for c in calls])

        results = await asyncio.gather(*(_execute_one(c, tools, context, loop) for c in calls))
        for call, (result, emitted) in zip(calls, results):
            record.add_turn(ToolTurn(tool_call_id=call.id, name=call.name, result=result))
            context.plan.extend(emitted)

    logger.warning("tool_loop_limit_reached", rounds=iterations)
    return _fallback(record, iterations, repairs)
