"""Editor package containing the block document model and buffer interface."""

from .buffer import BufferChange, BufferHandle, EditBuffer, InMemoryEditBuffer, ScreenPoint
from .document_model import Block, DocumentState, InlineContent

__all__ = [
    "Block",
    "BufferChange",
    "BufferHandle",
    "DocumentState",
    "EditBuffer",
    "InMemoryEditBuffer",
    "InlineContent",
    "ScreenPoint",
]
