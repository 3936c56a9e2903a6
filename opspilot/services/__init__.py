"""Service layer: KPI engine and cache, scheduling, token verification."""
