"""
Shell-style variable substitution for connection strings.

    replace("postgresql://${PGUSER}@localhost/app", {"PGUSER": "vet"})
    -> "postgresql://vet@localhost/app"

Only the braced ``${NAME}`` form is expanded. A bare ``$`` is literal, so
passwords such as ``p$ss`` survive untouched. Unknown variables expand to
the empty string.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

_VARIABLE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def replace(text: str, env: Mapping[str, str]) -> str:
    """Replace ``${NAME}`` references with values from ``env``."""
    return _VARIABLE.sub(lambda m: env.get(m.group(1), ""), text)


class Environment:
    """
    Snapshot of the process environment, taken on first use.

    Owned by a single vetting run and reused for every DSN it resolves.
    """

    def __init__(self, source: Mapping[str, str] | None = None) -> None:
        self._source = source
        self._snapshot: dict[str, str] | None = None

    @property
    def variables(self) -> Mapping[str, str]:
        if self._snapshot is None:
            self._snapshot = dict(os.environ if self._source is None else self._source)
        return self._snapshot

    def expand(self, text: str) -> str:
        return replace(text, self.variables)
