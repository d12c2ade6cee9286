"""Interactive prompts.

Services receive these as plain callables so tests and --yes runs can
answer without a terminal.
"""

from typing import Callable, Optional

Confirm = Callable[[str, bool], bool]
Prompt = Callable[[str], Optional[str]]


def ask_yes_no(question: str, default: bool = False) -> bool:
    """Ask a y/n question; an empty answer or closed stdin returns the default."""
    suffix = "(Y/n)" if default else "(y/N)"
    try:
        reply = input(f"{question} {suffix}: ").strip().lower()
    except EOFError:
        return default
    if not reply:
        return default
    return reply.startswith("y")


def ask_text(question: str) -> Optional[str]:
    """Read one line; None when stdin is closed."""
    try:
        return input(f"{question}: ").strip()
    except EOFError:
        return None


def always_yes(question: str, default: bool = False) -> bool:
    return True