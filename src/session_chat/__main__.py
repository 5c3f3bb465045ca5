"""
Entry point for running Session Chat as a module.

This allows users to run: python -m session_chat
"""

from session_chat.cli.main import app

if __name__ == "__main__":
    app()
