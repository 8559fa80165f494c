"""Interfaces for workflow collaborators.

This module defines the contracts that tools and LLM clients must implement
to be driven by the workflow engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from pydantic import BaseModel, Field


class ToolInterface(ABC):
    """Base interface for all tools invoked by ``tool`` steps.

    ``execute_tool`` may be a coroutine function or a plain function; plain
    functions are run in a worker thread by the engine.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    def input_schema(self) -> Dict[str, Any]:
        """Get the JSON schema for the tool input."""
        return {"type": "object", "properties": {}}

    @abstractmethod
    def execute_tool(self, arguments: Dict[str, Any]) -> Any:
        """Execute the tool with the provided arguments.

        Args:
            arguments: Dictionary of arguments for the tool

        Returns:
            Tool execution result
        """
        pass


class LLMResponse(BaseModel):
    """Completion returned by an LLM client"""

    content: str
    tokens_used: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)


class LLMClient(ABC):
    """Interface for LLM completion clients."""

    @abstractmethod
    async def complete(self, prompt: str) -> LLMResponse:
        """Complete a single user prompt."""
        pass

    @abstractmethod
    async def complete_with_system(
        self, system_prompt: str, user_prompt: str
    ) -> LLMResponse:
        """Complete a user prompt under a system prompt."""
        pass
