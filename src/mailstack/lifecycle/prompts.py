"""Interactive confirmation. ``--yes`` answers every question with its default."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from mailstack.errors import CancelledByUser

logger = logging.getLogger(__name__)

T = TypeVar("T")

_YES = frozenset({"y", "yes"})
_NO = frozenset({"n", "no"})


class Prompter:
    def __init__(
        self,
        yes: bool = False,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ) -> None:
        self.yes = yes
        self._input = input_fn
        self._output = output_fn

    def _ask(self, question: str) -> str:
        try:
            return self._input(question).strip()
        except (EOFError, KeyboardInterrupt):
            raise CancelledByUser("Operation cancelled", code="cancelled") from None

    def confirm(self, question: str, default: bool = True) -> bool:
        """Return True to proceed; a "no" answer cancels the command."""
        if self.yes:
            return True
        hint = "[Y/n]" if default else "[y/N]"
        while True:
            answer = self._ask(f"{question} {hint} ").lower()
            if not answer:
                accepted = default
                break
            if answer in _YES:
                accepted = True
                break
            if answer in _NO:
                accepted = False
                break
            self._output("Please answer yes or no.")
        if not accepted:
            raise CancelledByUser("Operation cancelled", code="cancelled")
        return True

    def choose(
        self,
        question: str,
        options: Sequence[tuple[T, str]],
        default: T,
    ) -> T:
        if self.yes:
            return default
        values = [value for value, _ in options]
        default_index = values.index(default) + 1
        self._output(question)
        for index, (_, label) in enumerate(options, start=1):
            marker = " (default)" if index == default_index else ""
            self._output(f"  {index}. {label}{marker}")
        while True:
            answer = self._ask(f"Choose 1-{len(options)} [{default_index}]: ")
            if not answer:
                return default
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                choice = values[int(answer) - 1]
                logger.debug("Chose %s for %r", choice, question)
                return choice
            self._output(f"Enter a number between 1 and {len(options)}.")
