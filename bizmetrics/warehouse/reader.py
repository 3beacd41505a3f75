"""
Warehouse Reader

Bulk reads of fact and dimension rows into Polars DataFrames. Reports pass
their own filtered SELECTs; the reader only executes them inside a scoped
read-only session and converts the rows with a schema derived from the
statement, so empty results still carry typed columns.

Any database error while reading is fatal for the run and surfaces as
SourceUnavailableError.
"""

from typing import Any, Callable, Dict, Optional

import polars as pl
import structlog
from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Select

from bizmetrics.database.connection import get_session
from bizmetrics.exceptions import SourceUnavailableError

logger = structlog.get_logger(__name__)

# Checked in order; Boolean before Integer since some dialects derive one from the other
_TYPE_MAP = (
    (Boolean, pl.Boolean),
    (DateTime, pl.Datetime),
    (Date, pl.Date),
    (Integer, pl.Int64),
    (Float, pl.Float64),
    (Numeric, pl.Float64),
    (String, pl.Utf8),
)


def polars_schema(statement: Select) -> Dict[str, pl.DataType]:
    """Polars schema for the columns a SELECT returns"""
    schema = {}
    for column in statement.selected_columns:
        dtype = None
        for sa_type, pl_type in _TYPE_MAP:
            if isinstance(column.type, sa_type):
                dtype = pl_type
                break
        schema[column.name] = dtype or pl.Utf8
    return schema


class WarehouseReader:
    """
    Read-only access to the warehouse snapshot.

    Example:
        reader = WarehouseReader()
        stmt = select(CrmOpportunity.crm_account_id, CrmOpportunity.close_date)
        opportunities = await reader.read(stmt, source="crm_opportunity")
    """

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self._session_factory = session_factory or get_session

    async def read(self, statement: Select, source: str) -> pl.DataFrame:
        """
        Execute ``statement`` and return its rows as a DataFrame.

        Raises:
            SourceUnavailableError: The source could not be read
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            reason = str(getattr(e, "orig", None) or e)
            logger.error("Failed to read source", source=source, error=reason)
            raise SourceUnavailableError(source, reason) from e

        frame = pl.DataFrame(rows, schema=polars_schema(statement), strict=False)
        logger.info("Source loaded", source=source, rows=len(frame))
        return frame

    async def read_table(self, model, *criteria) -> pl.DataFrame:
        """All columns of ``model`` matching ``criteria``"""
        statement = select(*model.__table__.columns)
        if criteria:
            statement = statement.where(*criteria)
        return await self.read(statement, source=model.__tablename__)
