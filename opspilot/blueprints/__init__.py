"""HTTP blueprints: KPI dashboards, scheduler administration and health probes."""
