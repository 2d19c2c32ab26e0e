"""Per-message narrowing of the tool catalog.

Binding all Mindbody tools on every turn costs a lot of input tokens and
makes the main model more likely to pick a wrong tool.  A cheap model first
picks the handful of tools the message actually needs.  Selection is
advisory: whenever it fails, the full catalog is used instead.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from studio_assistant.prompts import get_selector_prompt
from studio_assistant.services.metrics import metrics
from studio_assistant.services.structured import content_text, extract_json_object

logger = logging.getLogger(__name__)


@dataclass
class ToolSelection:
    tools: list[str] = field(default_factory=list)
    reasoning: str = ""
    fallback: bool = False


async def select_tools(
    llm: BaseChatModel,
    catalog_names: list[str],
    latest_message: str,
) -> ToolSelection:
    """Ask *llm* which of *catalog_names* the message needs.

    Unknown names are dropped and duplicates collapsed, keeping the model's
    order.  Any failure (network, unparseable reply) selects the whole catalog.
    """
    prompt = get_selector_prompt(catalog_names, latest_message)
    t0 = time.perf_counter()
    try:
        response = await llm.ainvoke([HumanMessage(content=prompt)])
        elapsed = (time.perf_counter() - t0) * 1000
        decoded = extract_json_object(content_text(response.content))
    except Exception as exc:
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_failure(
            "anthropic", "tool_selection",
            error_type=type(exc).__name__, latency_ms=elapsed,
        )
        logger.warning("Tool selection failed, using all %d tools: %s", len(catalog_names), exc)
        return ToolSelection(
            tools=list(catalog_names),
            reasoning="Tool selection failed; all tools are available.",
            fallback=True,
        )

    metrics.record_success("anthropic", "tool_selection", latency_ms=elapsed)

    requested = decoded.get("tools")
    if not isinstance(requested, list):
        requested = []
    known = set(catalog_names)
    selected: list[str] = []
    for name in requested:
        if not isinstance(name, str) or name not in known:
            logger.warning("Selector returned unknown tool %r, ignoring", name)
            continue
        if name not in selected:
            selected.append(name)

    reasoning = decoded.get("reasoning")
    selection = ToolSelection(tools=selected, reasoning=reasoning if isinstance(reasoning, str) else "")
    logger.info("Selected %d tools in %.0fms: %s", len(selected), elapsed, ", ".join(selected) or "none")
    return selection
