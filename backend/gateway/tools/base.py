"""Base interface for in-process tools served by the local backend."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.execution import CancellationToken, ProgressReporter
from core.index import ToolDescriptor


class ToolParamType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass
class ToolParameter:
    name: str
    type: ToolParamType
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class ToolDefinition:
    """Authoring-side tool definition, published as a ToolDescriptor."""
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)
    category: str = "general"

    def input_schema(self) -> dict:
        """JSON Schema for the tool's arguments."""
        properties = {}
        required = []
        for param in self.parameters:
            prop = {"type": param.type.value, "description": param.description}
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_descriptor(
        self,
        namespace: str,
        backend: str,
        revision: int = 1,
        capabilities: frozenset[str] = frozenset(),
    ) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            namespace=namespace,
            revision=revision,
            description=self.description,
            input_schema=self.input_schema(),
            tags=(self.category,),
            backend=backend,
            capabilities=capabilities,
        )


@dataclass
class ToolResult:
    """Result from executing a tool."""
    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ToolCall:
    """Cancellation and progress handles for one execution."""
    token: CancellationToken
    progress: ProgressReporter | None = None

    async def report(self, progress: float, total: float | None = None, message: str = "") -> None:
        if self.progress is not None:
            await self.progress.report(progress, total, message)

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless cancelled first. Returns True when cancelled."""
        try:
            await asyncio.wait_for(self.token.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


class BaseTool(ABC):
    """Abstract base class for in-process tools."""

    reports_progress: bool = False

    @abstractmethod
    def get_definition(self) -> ToolDefinition:
        """Return the tool definition."""
        ...

    @abstractmethod
    async def execute(self, call: ToolCall, **kwargs) -> ToolResult:
        """Execute the tool with given parameters."""
        ...

    @property
    def name(self) -> str:
        return self.get_definition().name

    def validate(self, arguments: dict) -> str | None:
        """Check arguments against declared parameters. Returns an error message or None."""
        definition = self.get_definition()
        declared = {p.name for p in definition.parameters}
        required = {p.name for p in definition.parameters if p.required}

        if declared:
            unknown = set(arguments) - declared
            if unknown:
                return f"Unknown parameters: {sorted(unknown)}. Allowed: {sorted(declared)}"
        missing = required - set(arguments)
        if missing:
            return f"Missing required parameters: {sorted(missing)}"
        return None
