"""
Workflow Tools

Tool registry plus the built-in tools:
- ask_user: interactive question on the terminal
- read_file / list_files: read-only file access for llm_with_tools steps
"""

from .registry import ToolError, ToolRegistry, create_default_registry
from .ask_user import AskUserTool
from .file_tools import ListFilesTool, ReadFileTool

__all__ = [
    "ToolError",
    "ToolRegistry",
    "create_default_registry",
    "AskUserTool",
    "ListFilesTool",
    "ReadFileTool",
]
