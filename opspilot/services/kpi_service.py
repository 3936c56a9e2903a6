"""
KPI Dashboard Service

Cache-aside access to the KPI dashboards:
    lookup by scope key → on miss compute → store with TTL → return.

Refresh never recomputes; it empties the cache so the next read for any
scope computes fresh data.
"""

import logging

from opspilot.services.kpi_cache import KpiCache, get_kpi_cache, org_kpi_key, team_kpi_key
from opspilot.services.kpi_engine import (
    compute_org_dashboard,
    compute_team_dashboard,
    workflow_in_organization,
)
from opspilot.services.kpi_types import ScopeKind, TeamScope

logger = logging.getLogger(__name__)


def get_org_dashboard(organization_id: str, cache: KpiCache | None = None) -> dict:
    """Organization dashboard payload, cached per organization."""
    cache = cache or get_kpi_cache()
    key = org_kpi_key(organization_id)

    payload = cache.get(key)
    if payload is not None:
        return payload

    logger.info("KPI cache miss — computing org dashboard",
                extra={"organization_id": organization_id, "cache_key": key})
    payload = compute_org_dashboard(organization_id).to_dict()
    cache.set(key, payload)
    return payload


def get_team_dashboard(organization_id: str, scope: TeamScope | None = None,
                       cache: KpiCache | None = None) -> dict:
    """Team/employee dashboard payload for the organization or one workflow."""
    cache = cache or get_kpi_cache()
    scope = scope or TeamScope.organization()
    # Workflow keys are not tenant-qualified: foreign or unknown ids bypass the cache
    if (scope.kind is ScopeKind.WORKFLOW
            and not workflow_in_organization(organization_id, scope.workflow_id)):
        logger.info("Workflow %s not in organization, serving empty team dashboard",
                    scope.workflow_id, extra={"organization_id": organization_id})
        return compute_team_dashboard(organization_id, scope).to_dict()

    key = team_kpi_key(organization_id, scope)

    payload = cache.get(key)
    if payload is not None:
        return payload

    logger.info("KPI cache miss — computing team dashboard",
                extra={"organization_id": organization_id, "cache_key": key})
    payload = compute_team_dashboard(organization_id, scope).to_dict()
    cache.set(key, payload)
    return payload


def refresh_kpis(cache: KpiCache | None = None) -> bool:
    """Drop every cached dashboard. Returns False if the backend could not be flushed."""
    cache = cache or get_kpi_cache()
    return cache.flush_all()


def cache_status(cache: KpiCache | None = None) -> dict:
    cache = cache or get_kpi_cache()
    return cache.stats()
