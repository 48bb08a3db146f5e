"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from core.index import DEFAULT_NAMESPACE, ToolDescriptor


# --- Registration ---
class ToolRegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    namespace: str = DEFAULT_NAMESPACE
    revision: int = Field(default=1, ge=1)
    description: str = ""
    input_schema: dict = Field(default_factory=lambda: {"type": "object", "properties": {}})
    tags: list[str] = []
    backend: str = "local"
    capabilities: list[str] = []

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            namespace=self.namespace,
            revision=self.revision,
            description=self.description,
            input_schema=self.input_schema,
            tags=tuple(self.tags),
            backend=self.backend,
            capabilities=frozenset(self.capabilities),
        )


class ToolRegisterResponse(BaseModel):
    status: str
    tool_id: str
    revision: int


# --- Listing ---
class ToolPageResponse(BaseModel):
    tools: list[dict]
    next_cursor: str | None = None
    revision: int


class NamespacePageResponse(BaseModel):
    namespaces: list[str]
    next_cursor: str | None = None
    revision: int
