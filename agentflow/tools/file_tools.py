"""Read-only file system tools."""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from ..interfaces import ToolInterface
from .registry import ToolError

DEFAULT_MAX_READ_SIZE = 10 * 1024 * 1024


def _entry_type(entry: os.DirEntry) -> str:
    if entry.is_symlink():
        return "symlink"
    if entry.is_dir():
        return "directory"
    return "file"


class ReadFileTool(ToolInterface):
    """Read the contents of a text file, bounded by ``max_size`` bytes."""

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read contents of a file"

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "max_size": {"type": "integer"},
            },
            "required": ["path"],
        }

    def execute_tool(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        path = arguments.get("path")
        if not isinstance(path, str) or not path:
            raise ToolError("path parameter is required and must be a string")

        max_size = arguments.get("max_size", DEFAULT_MAX_READ_SIZE)
        file_path = Path(path)
        if not file_path.is_file():
            raise ToolError(f"file does not exist: {path}")

        size = file_path.stat().st_size
        if size > int(max_size):
            raise ToolError(f"file too large: {size} bytes (max: {int(max_size)})")

        content = file_path.read_text(errors="replace")
        return {"path": path, "content": content, "size": len(content), "success": True}


class ListFilesTool(ToolInterface):
    """List the entries of a directory."""

    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List files in a directory"

    def execute_tool(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        path = arguments.get("path") or "."

        try:
            entries = sorted(os.scandir(path), key=lambda e: e.name)
        except OSError as e:
            raise ToolError(f"failed to list directory '{path}': {e}")

        files: List[Dict[str, Any]] = []
        for entry in entries:
            try:
                stat = entry.stat(follow_symlinks=False)
            except OSError:
                continue
            files.append(
                {
                    "name": entry.name,
                    "type": _entry_type(entry),
                    "size": stat.st_size,
                    "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                }
            )

        return {"path": path, "file_count": len(files), "files": files}
