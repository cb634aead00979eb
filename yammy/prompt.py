"""Operator confirmation for packages without a declared hash."""
from __future__ import annotations

import sys
from typing import Protocol

from prompt_toolkit import prompt

AFFIRMATIVE_ANSWERS = {"y", "yes"}


class Prompter(Protocol):
    """Asks the operator a yes/no question."""

    def is_interactive(self) -> bool:
        ...

    def ask(self, question: str) -> str:
        ...


class TerminalPrompter:
    """Reads the answer from the controlling terminal."""

    def is_interactive(self) -> bool:
        return sys.stdin.isatty()

    def ask(self, question: str) -> str:
        try:
            return prompt(question).strip()
        except (EOFError, KeyboardInterrupt):
            return ""


def is_affirmative(answer: str) -> bool:
    """Only an explicit yes counts; everything else is a no."""
    return (answer or "").strip().lower() in AFFIRMATIVE_ANSWERS
