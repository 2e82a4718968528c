"""DISC-E: a Discord bot that turns `/dalle <prompt>` commands into generated images."""

__version__ = "0.3.0"
