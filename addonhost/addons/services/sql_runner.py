from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("addonhost.addons.sql")

PREFIX_PLACEHOLDER = "__PREFIX__"

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)
_INSERT_INTO = re.compile(r"\bINSERT\s+INTO\b", re.I)

_IGNORE_FORMS = {
    "mysql": "INSERT IGNORE INTO",
    "mariadb": "INSERT IGNORE INTO",
    "sqlite": "INSERT OR IGNORE INTO",
}


def split_sql(text: str) -> List[str]:
    """Strip comments and split on ';' at end of line."""
    text = _BLOCK_COMMENT.sub("", text)
    statements: List[str] = []
    buf: List[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--") or stripped.startswith("#"):
            continue
        buf.append(line)
        if stripped.endswith(";"):
            stmt = "\n".join(buf).strip().rstrip(";").strip()
            if stmt:
                statements.append(stmt)
            buf = []
    tail = "\n".join(buf).strip().rstrip(";").strip()
    if tail:
        statements.append(tail)
    return statements


class SqlRunner:
    """
    Runs an addon's seed script (install.sql / testdata.sql).

    Seed data is not load-bearing: every failing statement is logged and
    skipped. Without a configured database the script is not run at all.
    """

    def __init__(self, database_url: Optional[str] = None, *, table_prefix: str = "", engine: Optional[Engine] = None) -> None:
        self.database_url = database_url
        self.table_prefix = table_prefix
        self._engine = engine

    @property
    def engine(self) -> Optional[Engine]:
        if self._engine is None and self.database_url:
            self._engine = create_engine(self.database_url)
        return self._engine

    def prepare(self, statement: str, dialect: str) -> str:
        statement = statement.replace(PREFIX_PLACEHOLDER, self.table_prefix)
        ignore_form = _IGNORE_FORMS.get(dialect)
        if ignore_form:
            statement = _INSERT_INTO.sub(ignore_form, statement)
        return statement

    def run_file(self, sql_file: Path) -> int:
        """Returns the number of statements that executed successfully."""
        if not sql_file.is_file():
            return 0
        engine = self.engine
        if engine is None:
            logger.info("No database configured; skipping %s", sql_file)
            return 0

        statements = split_sql(sql_file.read_text(encoding="utf-8"))
        ok = 0
        for stmt in statements:
            stmt = self.prepare(stmt, engine.dialect.name)
            try:
                with engine.begin() as conn:
                    conn.exec_driver_sql(stmt)
                ok += 1
            except SQLAlchemyError as e:
                logger.warning("Seed statement in %s failed (ignored): %s", sql_file.name, e)
        logger.info("Ran %d/%d statement(s) from %s", ok, len(statements), sql_file)
        return ok
