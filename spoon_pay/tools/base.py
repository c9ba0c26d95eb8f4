from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


class BaseTool(ABC, BaseModel):
    name: str = Field(description="The name of the tool")
    description: str = Field(description="A description of the tool")
    parameters: dict = Field(description="The parameters of the tool")

    model_config = {
        "arbitrary_types_allowed": True
    }

    async def __call__(self, *args, **kwargs) -> Any:
        return await self.execute(*args, **kwargs)

    @abstractmethod
    async def execute(self, *args, **kwargs) -> Any:
        raise NotImplementedError("Subclasses must implement this method")

    def to_param(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolResult(BaseModel):
    output: Any = Field(default=None)
    error: Optional[str] = Field(default=None)

    def __str__(self) -> str:
        return f"Error: {self.error}" if self.error else f"Output: {self.output}"
