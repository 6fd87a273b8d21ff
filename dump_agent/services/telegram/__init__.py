from .command_dispatcher import CommandDispatcher
from .telegram_client import TelegramClient, render_caption

__all__ = ["CommandDispatcher", "TelegramClient", "render_caption"]
