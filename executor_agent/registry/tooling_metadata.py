"""Descriptors for the tools and workflow templates exposed by a tool registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


@dataclass(slots=True)
class ToolDescriptor:
    """A callable tool and its JSON input schema."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)

    @property
    def properties(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.input_schema.get("properties") or {})

    @property
    def required_params(self) -> List[str]:
        return list(self.input_schema.get("required") or [])

    @property
    def optional_params(self) -> List[str]:
        required = set(self.required_params)
        return [name for name in self.properties if name not in required]

    def declares(self, param_name: str) -> bool:
        """Return True when the schema names the parameter at all."""
        return param_name in self.properties or param_name in self.required_params

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolDescriptor":
        schema = data.get("inputSchema") or data.get("input_schema") or {}
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            input_schema=dict(schema),
        )


@dataclass(slots=True)
class PromptArgument:
    """A single argument accepted by a workflow template."""

    name: str
    description: str = ""
    required: bool = False


@dataclass(slots=True)
class PromptDescriptor:
    """A workflow template (prompt) exposed by the registry."""

    name: str
    description: str = ""
    arguments: List[PromptArgument] = field(default_factory=list)

    @property
    def required_arguments(self) -> List[str]:
        return [argument.name for argument in self.arguments if argument.required]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptDescriptor":
        arguments = [
            PromptArgument(
                name=str(raw.get("name", "")),
                description=str(raw.get("description") or ""),
                required=bool(raw.get("required", False)),
            )
            for raw in data.get("arguments") or []
        ]
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            arguments=arguments,
        )


@dataclass(slots=True)
class RegistryCatalog:
    """Tools and workflow templates listed once per plan execution."""

    tools: List[ToolDescriptor] = field(default_factory=list)
    prompts: List[PromptDescriptor] = field(default_factory=list)

    def find_tool(self, name: str) -> Optional[ToolDescriptor]:
        return next((tool for tool in self.tools if tool.name == name), None)

    def find_prompt(self, name: str) -> Optional[PromptDescriptor]:
        return next((prompt for prompt in self.prompts if prompt.name == name), None)

    @property
    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.tools]


class ParamCategorization(BaseModel):
    """Triage of missing parameters reported by the registry validator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    resolvable: List[str] = Field(default_factory=list, description="Fetchable by calling another tool.")
    can_infer: List[str] = Field(default_factory=list, description="Derivable from context.")
    must_ask_user: List[str] = Field(default_factory=list, description="No safe default exists.")


class ValidationReport(BaseModel):
    """Result of validating a tool's arguments against its live schema."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool = True
    missing_params: List[str] = Field(default_factory=list)
    categorization: ParamCategorization = Field(default_factory=ParamCategorization)
    required_params: List[str] = Field(default_factory=list)
    provided_params: List[str] = Field(default_factory=list)


__all__ = [
    "ParamCategorization",
    "PromptArgument",
    "PromptDescriptor",
    "RegistryCatalog",
    "ToolDescriptor",
    "ValidationReport",
]
