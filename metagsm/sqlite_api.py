"""Writing session SQL records into an SQLite database."""

from __future__ import annotations

import sqlite3
from os import PathLike


class SqliteSink:
    """Executes SQL scripts, one statement per line, against a database file.

    An instance can be handed directly to a session manager as its SQL callback.
    """

    def __init__(self, path: str | PathLike[str] = "metadata.db") -> None:
        self.connection = sqlite3.connect(path, isolation_level=None)

    def execute(self, script: str) -> None:
        """Run every line of ``script`` as a statement; errors propagate."""
        for line in script.splitlines():
            if line.strip():
                self.connection.execute(line)

    __call__ = execute

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> SqliteSink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()