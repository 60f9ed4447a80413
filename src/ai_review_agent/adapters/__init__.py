"""Concrete implementations of provider interfaces."""

from .analysis.anthropic import AnthropicAnalysisProvider
from .comments.json_file import JsonFileCommentSource

__all__ = [
    "AnthropicAnalysisProvider",
    "JsonFileCommentSource",
]
