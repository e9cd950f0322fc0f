"""
Entry point for running agentloop as a module.

This allows users to run the CLI using:
    python -m agentloop [command] [options]
"""

from agentloop.cli.app import app

if __name__ == "__main__":
    app()
