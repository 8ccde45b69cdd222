"""
Tool Helpers - 工具描述与工具选择转换
"""

from typing import Any, Dict, List, Optional, Union

from ragbridge.domain.entities.message import ToolChoice, ToolInfo
from ragbridge.domain.errors import ConfigError


def validate_tool_options(
    tool_choice: Optional[ToolChoice],
    allowed_tool_names: Optional[List[str]],
    component: Optional[str] = None,
):
    """校验工具选择与允许的工具名是否兼容"""
    names = allowed_tool_names or []
    if tool_choice == ToolChoice.ALLOWED and names:
        raise ConfigError(
            "tool_choice 'allowed' is not supported when allowed tool names are present",
            component=component,
        )
    if tool_choice == ToolChoice.FORCED and len(names) > 1:
        raise ConfigError(
            "only one allowed tool name can be configured for tool_choice 'forced'",
            component=component,
        )


def to_openai_tools(tools: List[ToolInfo]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.desc,
                "parameters": tool.to_json_schema(),
            },
        }
        for tool in tools
    ]


def to_openai_tool_choice(
    tool_choice: Optional[ToolChoice], allowed_tool_names: Optional[List[str]] = None
) -> Optional[Union[str, Dict[str, Any]]]:
    if tool_choice is None:
        return None
    if tool_choice == ToolChoice.FORBIDDEN:
        return "none"
    if tool_choice == ToolChoice.ALLOWED:
        return "auto"
    names = allowed_tool_names or []
    if len(names) == 1:
        return {"type": "function", "function": {"name": names[0]}}
    return "required"
