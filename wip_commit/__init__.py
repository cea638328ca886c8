"""
wip-commit: review and auto-commit work in progress from an AI assistant's hooks.
"""

__version__ = "0.1.0"
