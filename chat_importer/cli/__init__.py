"""Command-line interface for the chat import executor."""
