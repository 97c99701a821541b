"""Command-line interface for inspecting and maintaining memory."""
