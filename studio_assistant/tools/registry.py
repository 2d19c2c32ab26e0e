"""Name → descriptor table for the tools exposed to the model.

A :class:`ToolDescriptor` pairs a pydantic parameters model (whose JSON
schema is what the model sees) with an async executor that receives the
raw argument dict.  The registry does not know anything about the LLM.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Executor = Callable[[dict[str, Any]], Awaitable[Any]]


class ToolParams(BaseModel):
    """Base for tool argument models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: type[BaseModel]
    executor: Executor

    @classmethod
    def from_handler(
        cls,
        name: str,
        description: str,
        parameters: type[BaseModel],
        handler: Callable[[Any], Awaitable[Any]],
    ) -> ToolDescriptor:
        """Build a descriptor whose executor parses arguments into *parameters*.

        Raises ``pydantic.ValidationError`` from the executor when the
        arguments do not fit the model.
        """

        async def executor(args: dict[str, Any]) -> Any:
            return await handler(parameters.model_validate(args))

        return cls(name=name, description=description, parameters=parameters, executor=executor)

    @property
    def json_schema(self) -> dict[str, Any]:
        return self.parameters.model_json_schema(by_alias=True)

    @property
    def required_parameters(self) -> list[str]:
        return list(self.json_schema.get("required", []))

    def to_anthropic_tool(self) -> dict[str, Any]:
        """Tool definition in the shape ``ChatAnthropic.bind_tools`` accepts."""
        schema = self.json_schema
        schema.pop("title", None)
        return {"name": self.name, "description": self.description, "input_schema": schema}


class ToolRegistry:
    """Ordered collection of uniquely named tools."""

    def __init__(self, tools: Iterable[ToolDescriptor] = ()) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        for descriptor in tools:
            self.register(descriptor)

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        """A new registry holding the known tools among *names*, in that order."""
        picked = ToolRegistry()
        for name in names:
            descriptor = self._tools.get(name)
            if descriptor is not None and name not in picked:
                picked.register(descriptor)
        return picked

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
