"""Shared Rich consoles for command output."""

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

THEME = Theme(
    {
        "track.uid": "dim",
        "track.field": "bold cyan",
        "error": "bold red",
    }
)

_console: Console | None = None
_error_console: Console | None = None


def get_console() -> Console:
    """Get or create the process-wide console."""
    global _console
    if _console is None:
        _console = Console(theme=THEME, highlight=False)
    return _console


def get_error_console() -> Console:
    """Get or create the stderr console; soft wrap keeps long paths on one line."""
    global _error_console
    if _error_console is None:
        _error_console = Console(stderr=True, theme=THEME, highlight=False, soft_wrap=True)
    return _error_console


def safe_print(message: str, style: str | None = None) -> None:
    """Print markup through the shared console.

    Args:
        message: Text with optional Rich markup
        style: Optional style name from THEME or a Rich style string
    """
    get_console().print(message, style=style)


def print_error(message: str) -> None:
    """Print a plain message to stderr in the theme's error style."""
    get_error_console().print(escape(message), style="error")
