"""Registry of tools available to ``tool`` and ``llm_with_tools`` steps."""

import logging
from typing import Dict, List, Optional

from ..interfaces import ToolInterface

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Raised by built-in tools when an invocation fails."""


class ToolRegistry:
    """Registry for tool instances, keyed by tool name."""

    def __init__(self):
        """Initialize tool registry."""
        self._tools: Dict[str, ToolInterface] = {}

    def register(self, tool: ToolInterface) -> ToolInterface:
        """
        Register a tool instance.

        Args:
            tool: Tool implementing ToolInterface

        Returns:
            The registered tool

        Raises:
            TypeError: If the tool doesn't implement ToolInterface
        """
        if not isinstance(tool, ToolInterface):
            raise TypeError(f"Expected a ToolInterface instance, got {type(tool)}")

        if tool.name in self._tools:
            logger.warning(f"Replacing registered tool '{tool.name}'")
        self._tools[tool.name] = tool
        return tool

    def get_tool(self, name: str) -> Optional[ToolInterface]:
        """Get a tool by name, or None if it isn't registered."""
        return self._tools.get(name)

    def list_tools(self) -> List[str]:
        """List registered tool names, sorted."""
        return sorted(self._tools.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._tools


def create_default_registry() -> ToolRegistry:
    """Create a registry holding the built-in tools."""
    from .ask_user import AskUserTool
    from .file_tools import ListFilesTool, ReadFileTool

    registry = ToolRegistry()
    registry.register(AskUserTool())
    registry.register(ReadFileTool())
    registry.register(ListFilesTool())
    return registry
