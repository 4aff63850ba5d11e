"""
CellClaw - Tool schema translation.

Converts the internal tool catalog into the tool/function declaration shapes
each vendor expects. All functions are pure.
"""

from typing import Any, Callable, Iterable, Optional

from .models import ParameterProperty, ToolApiDefinition, ToolParameters

NameMapper = Optional[Callable[[str], str]]


def wire_tool_name(name: str) -> str:
    """OpenAI and Gemini function names may not contain dots."""
    return name.replace(".", "_")


def tool_name_map(tools: Iterable[ToolApiDefinition]) -> dict[str, str]:
    """Map sanitized wire names back to catalog names."""
    return {wire_tool_name(t.name): t.name for t in tools}


def _property_schema(prop: ParameterProperty, upper_types: bool = False) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": prop.type.upper() if upper_types else prop.type,
        "description": prop.description,
    }
    if prop.enum is not None:
        schema["enum"] = list(prop.enum)
    return schema


def parameters_to_json_schema(
    params: ToolParameters, upper_types: bool = False
) -> dict[str, Any]:
    """Render ToolParameters as a JSON-schema object."""
    schema: dict[str, Any] = {
        "type": params.type.upper() if upper_types else params.type,
        "properties": {
            key: _property_schema(prop, upper_types)
            for key, prop in params.properties.items()
        },
    }
    if params.required:
        schema["required"] = list(params.required)
    return schema


def tools_to_anthropic_format(
    tools: Iterable[ToolApiDefinition], rename: NameMapper = None
) -> list[dict[str, Any]]:
    """Convert tool definitions to Anthropic's flat tool format."""
    return [
        {
            "name": rename(t.name) if rename else t.name,
            "description": t.description,
            "input_schema": parameters_to_json_schema(t.input_schema),
        }
        for t in tools
    ]


def tools_to_openai_format(
    tools: Iterable[ToolApiDefinition], rename: NameMapper = None
) -> list[dict[str, Any]]:
    """Convert tool definitions to OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": rename(t.name) if rename else t.name,
                "description": t.description,
                "parameters": parameters_to_json_schema(t.input_schema),
            },
        }
        for t in tools
    ]


def tools_to_gemini_format(
    tools: Iterable[ToolApiDefinition], rename: NameMapper = None
) -> list[dict[str, Any]]:
    """Convert tool definitions to Gemini ``function_declarations``."""
    declarations = [
        {
            "name": rename(t.name) if rename else t.name,
            "description": t.description,
            "parameters": parameters_to_json_schema(t.input_schema, upper_types=True),
        }
        for t in tools
    ]
    if not declarations:
        return []
    return [{"function_declarations": declarations}]


def definitions_from_anthropic_format(
    payload: Iterable[dict[str, Any]],
) -> list[ToolApiDefinition]:
    """Parse the flat tool shape back into catalog definitions."""
    return [
        ToolApiDefinition(
            name=entry["name"],
            description=entry.get("description", ""),
            input_schema=ToolParameters.from_json_schema(entry.get("input_schema", {})),
        )
        for entry in payload
    ]
