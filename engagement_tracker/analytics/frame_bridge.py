"""Conversions between pandas and Polars for the analytics internals.

Frames come out of the database as pandas (``read_sql_query``) and the
public analytics functions return pandas; aggregation in between runs on
Polars.
"""

from __future__ import annotations

from collections.abc import Iterable

import pandas as pd
import polars as pl


def to_pl(df_pd: pd.DataFrame | pl.DataFrame | None) -> pl.DataFrame:
    """Convert pandas to Polars; ``None`` becomes an empty frame."""
    if df_pd is None:
        return pl.DataFrame()
    if isinstance(df_pd, pl.DataFrame):
        return df_pd
    return pl.from_pandas(df_pd, include_index=False)


def to_pd(df_pl: pl.DataFrame | pd.DataFrame | None) -> pd.DataFrame:
    if df_pl is None:
        return pd.DataFrame()
    if isinstance(df_pl, pd.DataFrame):
        return df_pl
    return df_pl.to_pandas()


def require_columns(df: pl.DataFrame | pd.DataFrame, cols: Iterable[str]) -> None:
    """Raise ``ValueError`` naming any of ``cols`` missing from ``df``."""
    present = set(df.columns)
    missing = [c for c in cols if c not in present]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


__all__ = ["to_pl", "to_pd", "require_columns"]
