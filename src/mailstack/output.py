"""Operator-facing progress lines on stdout."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Sequence
from typing import TextIO

from mailstack.dns_records import DnsRecord, format_records


class Reporter:
    def __init__(self, stream: TextIO | None = None, quiet: bool = False) -> None:
        self._stream = stream or sys.stdout
        self.quiet = quiet
        self.current_step: str | None = None

    def _write(self, line: str) -> None:
        if not self.quiet:
            print(line, file=self._stream)

    def step(self, message: str) -> None:
        self.current_step = message
        self._write(f"> {message}")

    def info(self, message: str) -> None:
        self._write(f"  {message}")

    def success(self, message: str) -> None:
        self._write(f"+ {message}")

    def warning(self, message: str) -> None:
        self._write(f"! {message}")

    def records(self, title: str, records: Iterable[DnsRecord]) -> None:
        self._write(title)
        for line in format_records(records):
            self._write(f"  {line}")

    def table(self, rows: Sequence[tuple[str, str]]) -> None:
        if not rows:
            return
        width = max(len(label) for label, _ in rows)
        for label, value in rows:
            self._write(f"  {label.ljust(width)}  {value}")
