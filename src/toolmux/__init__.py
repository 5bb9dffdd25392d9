"""toolmux - tool provider integration layer for agent runtimes."""

__version__ = "0.1.0"
