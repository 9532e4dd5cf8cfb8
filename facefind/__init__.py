"""
Core package init for facefind.

Finds where a person appears in a video given one reference photo.
"""

__all__ = [
    "pipeline",
    "recognition",
    "sampling",
    "config",
    "errors",
    "io_utils",
    "types",
]
