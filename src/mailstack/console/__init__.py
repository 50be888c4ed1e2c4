"""Read-only dashboard API served on localhost."""

from mailstack.console.app import create_console_app, serve

__all__ = ["create_console_app", "serve"]
