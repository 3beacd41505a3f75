"""
Warehouse Access Module
"""
from .reader import WarehouseReader, polars_schema

__all__ = [
    "WarehouseReader",
    "polars_schema",
]
