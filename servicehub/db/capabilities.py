"""Schema capabilities resolved once at startup.

Columns added by later migrations may be missing from an existing database.
Code that touches them branches on these flags rather than on driver error
text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from servicehub.errors import SchemaDriftError
from servicehub.models.proposal import PAYOUT_COLUMNS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaCapabilities:
    payout_columns: bool = True
    review_request_column: bool = True


_current = SchemaCapabilities()


def get_capabilities() -> SchemaCapabilities:
    return _current


def set_capabilities(caps: SchemaCapabilities) -> None:
    global _current
    _current = caps


def _inspect_columns(sync_conn) -> dict[str, set[str]]:
    insp = inspect(sync_conn)
    tables = set(insp.get_table_names())
    found = {}
    for table in ("proposals", "reviews"):
        if table in tables:
            found[table] = {c["name"] for c in insp.get_columns(table)}
        else:
            found[table] = set()
    return found


async def detect_capabilities(engine: AsyncEngine) -> SchemaCapabilities:
    """Inspect the live schema and return the capability flags."""
    async with engine.connect() as conn:
        columns = await conn.run_sync(_inspect_columns)

    missing_payout = [c for c in PAYOUT_COLUMNS if c not in columns["proposals"]]
    caps = SchemaCapabilities(
        payout_columns=not missing_payout,
        review_request_column="service_request_id" in columns["reviews"],
    )
    if missing_payout:
        logger.warning(
            "proposals table is missing payout columns %s; payouts are disabled until the migration runs",
            ", ".join(missing_payout),
        )
    if not caps.review_request_column:
        logger.warning("reviews.service_request_id is missing; duplicate review checks use metadata")
    return caps


def require_payout_columns() -> None:
    """Raise SchemaDriftError when the payout migration has not been applied."""
    if not _current.payout_columns:
        raise SchemaDriftError("proposals payout columns are missing")
