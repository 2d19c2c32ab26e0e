"""Required-parameter checks that run before any tool touches the network.

The model regularly calls client-specific tools before it has looked up the
client's ID.  Instead of letting those calls hit Mindbody and fail with an
opaque 400, the wrapper returns a structured rejection telling the model
which lookup to perform first, so it can correct itself on the next step.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Iterable
from typing import Any

from studio_assistant.tools.registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

_IDENTIFIER_KEY_RE = re.compile(r"Ids?$")

# parameter → (lookup tool, what to search by, field holding the ID)
_LOOKUPS: dict[str, tuple[str, str, str]] = {
    "clientId": ("get_clients", 'searchText="<client name, email or phone>"', "Clients[].Id"),
    "clientIds": ("get_clients", 'searchText="<client name, email or phone>"', "Clients[].Id"),
    "classId": ("get_classes", 'startDateTime="<date of the class>"', "Classes[].Id"),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def coerce_identifiers(args: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *args* with numeric identifiers rendered as strings.

    Applies to keys ending in ``Id``/``Ids``; lists are coerced item by item.
    """
    coerced = dict(args)
    for key, value in args.items():
        if not _IDENTIFIER_KEY_RE.search(key):
            continue
        if _is_number(value):
            coerced[key] = str(value)
        elif isinstance(value, list):
            coerced[key] = [str(item) if _is_number(item) else item for item in value]
    return coerced


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _example_for(tool_name: str, missing: list[str]) -> str:
    steps = []
    for param in missing:
        lookup = _LOOKUPS.get(param)
        if lookup is None:
            continue
        lookup_tool, search, id_field = lookup
        steps.append(f"{lookup_tool}({search}) → take {id_field}")
    call = ", ".join(
        f'{param}=["<id>"]' if param.endswith("Ids") else f'{param}="<id>"'
        for param in missing
    )
    steps.append(f"{tool_name}({call})")
    return " → ".join(steps)


def _instructions_for(tool_name: str, missing: list[str]) -> list[str]:
    """Ordered steps the model should follow before retrying *tool_name*."""
    steps = []
    for lookup_tool, search, id_field in dict.fromkeys(
        _LOOKUPS[p] for p in missing if p in _LOOKUPS
    ):
        steps.append(f"Call {lookup_tool} with {search}.")
        steps.append(f"Take {id_field} from the result.")
    retry = ", ".join(
        f"{param}=<id>" if _IDENTIFIER_KEY_RE.search(param) else f"{param}=<value>"
        for param in missing
    )
    steps.append(f"Retry {tool_name} with {retry}.")
    if len(steps) > 1:
        steps.append("If the user did not say which record they mean, ask them.")
    return steps


def check_required(descriptor: ToolDescriptor, args: dict[str, Any]) -> dict[str, Any] | None:
    """Return a rejection payload when a required parameter is absent or empty."""
    required = descriptor.required_parameters
    missing = [name for name in required if _is_missing(args.get(name))]
    if not missing:
        return None

    return {
        "success": False,
        "error": (
            f"Missing required parameter(s) for {descriptor.name}: {', '.join(missing)}"
        ),
        "missingParameters": missing,
        "instructions": _instructions_for(descriptor.name, missing),
        "example": _example_for(descriptor.name, missing),
        "requiredParameters": required,
        "receivedParameters": sorted(args),
    }


def with_validation(descriptor: ToolDescriptor) -> ToolDescriptor:
    """Wrap *descriptor* so its executor only runs with complete arguments."""
    inner = descriptor.executor

    async def executor(args: dict[str, Any]) -> Any:
        coerced = coerce_identifiers(args)
        rejection = check_required(descriptor, coerced)
        if rejection is not None:
            logger.warning(
                "Rejected %s call: missing %s",
                descriptor.name, ", ".join(rejection["missingParameters"]),
            )
            return rejection
        return await inner(coerced)

    return dataclasses.replace(descriptor, executor=executor)


def validated_tools(registry: ToolRegistry, names: Iterable[str]) -> dict[str, ToolDescriptor]:
    """Wrap the known tools among *names*; unknown names are skipped."""
    return {descriptor.name: with_validation(descriptor) for descriptor in registry.subset(names)}
