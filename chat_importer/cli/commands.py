#!/usr/bin/env python3
"""
Main execution module for the chat import executor.

Importing the command modules registers their subcommands on the shared
``cli`` group.
"""

from chat_importer.cli import execute_cmd, reset_cmd, status_cmd  # noqa: F401
from chat_importer.cli.common import cli


def main() -> None:
    """Entry point for the ``chat-importer`` console script."""
    cli()


if __name__ == "__main__":
    main()
