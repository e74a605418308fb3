"""
Base tool interface. Each tool exposes a JSON schema for the model
and an async `run` method.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ToolArgumentsError(ValueError):
    """The model supplied arguments the tool cannot use."""


class BaseTool(ABC):
    name: str
    description: str
    parameters: dict  # JSON Schema object

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        """Execute the tool and return a JSON-serializable result."""

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
