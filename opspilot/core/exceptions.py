"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from opspilot.core.exceptions import CacheFlushError, DataSourceError, NotFoundError

    raise NotFoundError(resource="ScheduledJob", resource_id="daily_digest")
    raise DataSourceError("active projects", organization_id=org_id) from exc
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model/entity name (e.g. "ScheduledJob").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class DataSourceError(Exception):
    """Raised when a read against the data store fails during aggregation.

    Any failing fetch is fatal for the request: no partial dashboard is
    ever returned. Maps to HTTP 500 with a generic body.

    Args:
        fetch: Short label of the fetch that failed (e.g. "active projects").
        organization_id: Tenant being aggregated, for log correlation only.
    """

    def __init__(self, fetch: str, organization_id: str | None = None) -> None:
        self.fetch = fetch
        self.organization_id = organization_id
        msg = f"Failed to fetch {fetch}"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class CacheFlushError(Exception):
    """Raised by scheduled jobs when the KPI cache backend refuses a flush.

    The manual refresh endpoint reports the same condition as a 500; the
    scheduled job raises so the run is recorded as failed.
    """
