"""
Spatial index engines.

An engine owns the published quadtree (nodes + the raw points behind them) and hands
out read-only snapshots for searches.
Two backends share one builder: an in-memory snapshot (shapely STRtree) and DuckDB.
"""
