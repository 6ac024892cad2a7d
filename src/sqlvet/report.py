"""
Diagnostic output for vetting runs.

Every reported failure is one line:

    <file>: <query>: <rule>: <message>
    <file>: <query>: <rule>                  (rule without a message)

Lines are written as soon as they are reported, so a run that is later
aborted by a fatal error still shows what was found up to that point.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from rich.console import Console

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Violation:
    """One reported failure of one rule on one query."""

    filename: str
    query_name: str
    rule_name: str
    message: str = ""

    def format(self) -> str:
        line = f"{self.filename}: {self.query_name}: {self.rule_name}"
        if self.message:
            line = f"{line}: {self.message}"
        return line

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _diagnostic_console() -> Console:
    # Plain text: SQL and rule messages routinely contain [brackets].
    return Console(stderr=True, markup=False, highlight=False, soft_wrap=True)


class Reporter:
    """Collects violations and writes each one as it arrives."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or _diagnostic_console()
        self.violations: list[Violation] = []

    def report(
        self,
        filename: str,
        query_name: str,
        rule_name: str,
        message: str = "",
    ) -> Violation:
        violation = Violation(filename, query_name, rule_name, message)
        self.violations.append(violation)
        self.console.print(violation.format(), markup=False, highlight=False)
        logger.debug("Reported %s", violation.format())
        return violation

    @property
    def count(self) -> int:
        return len(self.violations)

    @property
    def failed(self) -> bool:
        return bool(self.violations)
