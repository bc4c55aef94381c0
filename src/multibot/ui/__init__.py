"""UI rendering utilities for multibot CLI commands."""

from multibot.ui.display import (
    DiffFormatter,
    Formatter,
    JsonFormatter,
    TextFormatter,
    get_formatter,
    record_header,
)

__all__ = [
    "DiffFormatter",
    "Formatter",
    "JsonFormatter",
    "TextFormatter",
    "get_formatter",
    "record_header",
]
