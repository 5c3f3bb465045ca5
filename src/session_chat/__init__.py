"""
Session Chat: chat session and message orchestration engine.
"""

__version__ = "0.1.0"
