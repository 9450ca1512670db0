#!/usr/bin/env python3
"""
Main execution module for the chat import executor
"""

from chat_importer.cli.commands import main

if __name__ == "__main__":
    main()
