"""
Identifier hashing for privacy-preserving customer keys.

One-way SHA-256 over ``salt + identifier``. The salt is application-wide;
collisions are accepted given the size of the hash space.
"""

import hashlib
from typing import Optional

import polars as pl


def hash_identifier(value, salt: str) -> Optional[str]:
    if value is None:
        return None
    return hashlib.sha256(f"{salt}{value}".encode()).hexdigest()


def hash_identifier_expr(column: str, salt: str) -> pl.Expr:
    """Hex digest of a column's values; nulls stay null"""
    return (
        pl.col(column)
        .cast(pl.Utf8)
        .map_elements(lambda x: hash_identifier(x, salt), return_dtype=pl.Utf8)
    )
