"""Scheduled MySQL dump agent that delivers backups through a Telegram bot."""

__version__ = "0.1.0"
