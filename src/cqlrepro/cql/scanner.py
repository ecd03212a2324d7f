"""Cursor-based paged scans over the users table.

``PagedScanner.scan(table, page_size_cap, continuation_token)`` returns at
most ``page_size_cap`` records and an opaque continuation token. A cap of 0
scans the whole table with the driver's own page size and returns an empty
token. A non-empty token resumes the scan where the previous call stopped.

Why This Matters:
    The server defect being reproduced surfaces only when a scan resumes
    from the paging state of a one-row page with a larger page size. The
    scanner therefore hands the token to the driver untouched and reports
    the server's failure precisely: a ``KnownDefectError`` for the
    ``java.lang.NullPointerException`` signature and a plain ``ScanError``
    for anything else.

Paging model:
    ::

        scan(cap=1, token=b"")          scan(cap=5, token=T1)
        ┌───────────────┐               ┌───────────────────────┐
        │ fetch_size=1  │──► [r1], T1   │ fetch_size=5, state=T1 │──► [r2..r6], T2
        └───────────────┘               └───────────────────────┘

    With a cap the internal fetch size defaults to the cap, so the token the
    driver returns points just past the last returned record. A larger
    ``fetch_size`` override keeps the cap as a hard ceiling but the token then
    points past the whole fetched page, as the driver defines it.

Ordering:
    No ordering is imposed. Rows come back in token order of the partition
    key; callers comparing sets must ignore order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from cassandra import ConsistencyLevel
from cassandra.query import SimpleStatement

from cqlrepro.core.errors import KnownDefectError, ScanError
from cqlrepro.core.logging import get_logger

logger = get_logger(__name__)

KNOWN_DEFECT_SIGNATURE = "java.lang.NullPointerException"

_TABLE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,47}(\.[A-Za-z][A-Za-z0-9_]{0,47})?$")


@dataclass(frozen=True)
class UserRecord:
    """Seeded test payload. Identity is ``(first_name, last_name)``."""

    first_name: str
    last_name: str
    age: int

    @property
    def identity(self) -> tuple[str, str]:
        return (self.first_name, self.last_name)

    @classmethod
    def from_row(cls, row: Any) -> UserRecord:
        return cls(first_name=row.first_name, last_name=row.last_name, age=row.age)


@dataclass(frozen=True)
class ScanPage:
    """Records returned by one scan call and the token to continue from."""

    records: list[UserRecord] = field(default_factory=list)
    next_token: bytes = b""

    @property
    def exhausted(self) -> bool:
        return not self.next_token

    def __len__(self) -> int:
        return len(self.records)


def is_known_defect(exc: BaseException) -> bool:
    """True when ``exc`` carries the server NullPointerException signature."""
    message = getattr(exc, "message", None) or str(exc)
    return KNOWN_DEFECT_SIGNATURE in str(message)


class _ScanCursor:
    """Holds a driver result set and releases it on every exit path."""

    def __init__(self, result_set: Any) -> None:
        self.result_set = result_set

    def __enter__(self) -> _ScanCursor:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self.result_set is None

    def close(self) -> None:
        if self.result_set is None:
            return
        future = getattr(self.result_set, "response_future", None)
        if future is not None:
            future.clear_callbacks()
        self.result_set = None


class PagedScanner:
    """Runs paged ``SELECT`` scans on an open session.

    Parameters
    ----------
    session
        An open driver session bound to the run's keyspace.
    fetch_size
        Internal page size used when a cap is given. ``None`` uses the cap.
    """

    columns = ("first_name", "last_name", "age")

    def __init__(self, session: Any, *, fetch_size: int | None = None) -> None:
        self.session = session
        self.fetch_size = fetch_size
        self.last_cursor: _ScanCursor | None = None

    def build_statement(self, table: str, page_size_cap: int) -> SimpleStatement:
        if not _TABLE_NAME.match(table):
            raise ScanError(f"Malformed table name: {table!r}").with_context(table=table)
        query = f"SELECT {', '.join(self.columns)} FROM {table}"
        kwargs: dict[str, Any] = {"consistency_level": ConsistencyLevel.QUORUM}
        if page_size_cap > 0:
            kwargs["fetch_size"] = self.fetch_size or page_size_cap
        return SimpleStatement(query, **kwargs)

    def scan(
        self,
        table: str,
        page_size_cap: int = 0,
        continuation_token: bytes | None = None,
    ) -> ScanPage:
        """Scan ``table`` returning at most ``page_size_cap`` records.

        Raises
        ------
        KnownDefectError
            The driver/server failed with the NullPointerException signature.
        ScanError
            Any other failure while executing or paging.
        """
        cap = max(page_size_cap or 0, 0)
        statement = self.build_statement(table, cap)
        records: list[UserRecord] = []

        try:
            result_set = self.session.execute(statement, paging_state=continuation_token or None)
        except Exception as exc:
            raise self._scan_error(exc, table, cap) from exc

        with _ScanCursor(result_set) as cursor:
            self.last_cursor = cursor
            try:
                next_token = self._collect(cursor.result_set, cap, records)
            except Exception as exc:
                raise self._scan_error(exc, table, cap) from exc

        logger.info(
            "scan.complete",
            table=table,
            cap=cap,
            resumed=bool(continuation_token),
            records=len(records),
            exhausted=not next_token,
        )
        return ScanPage(records=records, next_token=next_token)

    @staticmethod
    def _collect(result_set: Any, cap: int, records: list[UserRecord]) -> bytes:
        while True:
            for row in result_set.current_rows:
                records.append(UserRecord.from_row(row))
                if cap and len(records) >= cap:
                    return result_set.paging_state or b""
            if not result_set.has_more_pages:
                return b""
            result_set.fetch_next_page()

    @staticmethod
    def _scan_error(exc: Exception, table: str, cap: int) -> ScanError:
        if is_known_defect(exc):
            error: ScanError = KnownDefectError(
                f"Server raised {KNOWN_DEFECT_SIGNATURE} while paging {table}", cause=exc
            )
        else:
            error = ScanError(f"Scan of {table} failed: {exc}", cause=exc)
        error.with_context(table=table, page_size_cap=cap)
        return error


__all__ = [
    "KNOWN_DEFECT_SIGNATURE",
    "PagedScanner",
    "ScanPage",
    "UserRecord",
    "is_known_defect",
]
