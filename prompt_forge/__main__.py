"""
Entry point for running Prompt Forge as a module.

Enables execution via:
    python -m prompt_forge [command] [options]

Examples:
    python -m prompt_forge migrate
    python -m prompt_forge history --limit 5
"""

from prompt_forge.cli import app

if __name__ == "__main__":
    app()
