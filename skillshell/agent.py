"""Tool-calling agent loop for Skill Shell.

All model calls go through this module. It speaks the OpenAI chat
completions protocol, so any compatible endpoint works; DeepSeek is the
default.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from openai import OpenAI

from .config import Settings
from .errors import ToolValidationError
from .tools import Toolset

DEFAULT_INSTRUCTIONS = """You are an assistant with access to skills.
Use the skill tool to learn how a skill works, then run its scripts with bash."""

DEFAULT_PROMPT = """I have a CSV file with sales data. Its content is:

date,product,quantity,price,region
2024-01-15,Widget A,100,29.99,North
2024-01-15,Widget B,50,49.99,South
2024-01-16,Widget A,75,29.99,East
2024-01-16,Widget C,200,19.99,North
2024-01-17,Widget B,30,49.99,West
2024-01-17,Widget A,150,29.99,North

Please:
1. First, write the data to /sales.csv
2. Use the csv skill to analyze the file
3. Keep only the rows for the North region
4. Sort them by quantity (highest first)
"""


@dataclass
class ToolCallRecord:
    name: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]


@dataclass
class AgentStep:
    """One model turn and the tool calls it made."""

    index: int
    text: str
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    tokens: int = 0


@dataclass
class AgentRun:
    text: str
    steps: List[AgentStep]
    total_tokens: int


def build_client(settings: Settings) -> OpenAI:
    if not settings.llm_api_key:
        raise RuntimeError(
            "No API key configured. Set LLM_API_KEY (or DEEPSEEK_API_KEY / OPENAI_API_KEY)."
        )
    return OpenAI(base_url=settings.llm_base_url, api_key=settings.llm_api_key)


def _decode_arguments(raw: Optional[str]) -> Dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {"_raw": raw}
    return value if isinstance(value, dict) else {"_raw": raw}


def run_agent(
    prompt: str,
    toolset: Toolset,
    instructions: str = DEFAULT_INSTRUCTIONS,
    model: str = "deepseek-chat",
    client: Any = None,
    max_steps: int = 20,
    on_step: Optional[Callable[[AgentStep], None]] = None,
) -> AgentRun:
    """Drive the model until it answers without requesting tools.

    Parameters
    ----------
    prompt:
        The user request.
    toolset:
        A READY toolset; its skill list is appended to the system message.
    client:
        An ``openai.OpenAI``-compatible client (anything exposing
        ``chat.completions.create``).
    max_steps:
        Upper bound on model turns; the last text seen is returned when hit.
    on_step:
        Called after every model turn, e.g. for progress logging.
    """
    if client is None:
        raise ValueError("run_agent requires a chat completions client.")

    system = instructions.strip() + "\n\n" + toolset.instructions
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]
    tools = [definition.to_openai() for definition in toolset.definitions()]
    steps: List[AgentStep] = []
    total_tokens = 0
    text = ""

    for index in range(1, max_steps + 1):
        try:
            response = client.chat.completions.create(model=model, messages=messages, tools=tools)
        except Exception:
            logger.exception("Model call failed at step {step}.", step=index)
            raise

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) or 0
        total_tokens += tokens
        message = response.choices[0].message
        text = message.content or ""
        step = AgentStep(index=index, text=text, tokens=tokens)
        calls = message.tool_calls or []

        if calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": text,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in calls
                    ],
                }
            )
        for call in calls:
            name = call.function.name
            try:
                result = toolset.invoke(name, call.function.arguments)
            except ToolValidationError as exc:
                logger.warning("Rejected tool call {tool}: {error}", tool=name, error=str(exc))
                result = {"error": str(exc)}
            except Exception as exc:
                logger.exception("Tool {tool} failed at step {step}", tool=name, step=index)
                result = {"error": f"Tool '{name}' failed: {exc}"}
            step.tool_calls.append(
                ToolCallRecord(name=name, arguments=_decode_arguments(call.function.arguments), result=result)
            )
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, ensure_ascii=False),
                }
            )

        steps.append(step)
        if on_step is not None:
            on_step(step)
        if not calls:
            return AgentRun(text=text, steps=steps, total_tokens=total_tokens)

    logger.warning("Agent stopped after reaching max_steps={max_steps}", max_steps=max_steps)
    return AgentRun(text=text, steps=steps, total_tokens=total_tokens)
