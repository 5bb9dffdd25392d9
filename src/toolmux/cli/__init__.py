"""Command-line interface for toolmux."""
