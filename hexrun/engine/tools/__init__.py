"""Tools the native backend exposes to the model."""
from .base import (
    Tool,
    ToolContext,
    ToolDef,
    ToolRegistry,
    make_schema,
)

__all__ = [
    "Tool",
    "ToolContext",
    "ToolDef",
    "ToolRegistry",
    "make_schema",
]
