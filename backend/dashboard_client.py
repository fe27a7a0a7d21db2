"""
Dashboard API client.
Reads metric rows, totals, project groups and integrations from the metrics
query interface, and posts per-account sync triggers for backfills.
"""

import logging
from typing import Optional, Sequence

import httpx

from dashboard_config import DASHBOARD_API_BASE, DASHBOARD_API_TIMEOUT
from metrics.models import (
    AggregatedTotal,
    AggregatedTotals,
    Integration,
    MetricsResponse,
    ProductMetricsResponse,
    ProjectGroup,
)

logger = logging.getLogger(__name__)

# Sent with every request; the API rejects calls without it
REQUEST_HEADERS = {
    "x-omd-request": "1",
    "Content-Type": "application/json",
}


class DashboardAPIError(Exception):
    """Raised for any failed call to the dashboard API. The message is shown to users verbatim."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _window_params(
    from_date: Optional[str],
    to_date: Optional[str],
    account_ids: Optional[Sequence[str]],
    aggregation: Optional[str] = None,
) -> dict:
    params = {}
    if account_ids:
        params["accountIds"] = ",".join(account_ids)
    if from_date:
        params["from"] = from_date
    if to_date:
        params["to"] = to_date
    if aggregation:
        params["aggregation"] = aggregation
    return params


class DashboardAPIClient:
    """Async client for the metrics query interface."""

    def __init__(
        self,
        base_url: str = DASHBOARD_API_BASE,
        timeout: float = DASHBOARD_API_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _call(self, method: str, path: str, data: dict = None, params: dict = None):
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if method.upper() == "GET":
                    response = await client.get(url, headers=REQUEST_HEADERS, params=params)
                elif method.upper() == "POST":
                    response = await client.post(url, headers=REQUEST_HEADERS, json=data)
                else:
                    raise DashboardAPIError(f"Unsupported method: {method}")

                if response.status_code >= 400:
                    raise DashboardAPIError(self._error_message(response), response.status_code)

                if response.status_code == 204:
                    return {}
                return response.json()

        except httpx.TimeoutException:
            raise DashboardAPIError("Connection timeout. Please check the dashboard API")
        except httpx.RequestError as e:
            raise DashboardAPIError(f"Connection error: {str(e)}")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """The body's "error" field when present, so cooldown messages survive intact."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        logger.error(f"Dashboard API error {response.status_code}: {response.text[:500]}")
        return f"Request failed: {response.status_code}"

    # ==================== Metrics ====================

    async def fetch_metrics(
        self,
        from_date: Optional[str],
        to_date: Optional[str],
        account_ids: Optional[Sequence[str]] = None,
    ) -> MetricsResponse:
        """Daily rows for the window plus account labels."""
        result = await self._call("GET", "/api/metrics", params=_window_params(from_date, to_date, account_ids))
        return MetricsResponse.model_validate(result or {})

    async def fetch_totals(
        self,
        from_date: Optional[str],
        to_date: Optional[str],
        account_ids: Optional[Sequence[str]] = None,
    ) -> AggregatedTotals:
        """Server-side totals (aggregation=total): flow sums plus latest stock snapshots."""
        result = await self._call(
            "GET", "/api/metrics", params=_window_params(from_date, to_date, account_ids, "total"),
        )
        rows = [AggregatedTotal.model_validate(r) for r in (result or [])]
        return AggregatedTotals(rows=rows)

    async def fetch_product_metrics(
        self,
        from_date: Optional[str],
        to_date: Optional[str],
        account_ids: Optional[Sequence[str]] = None,
    ) -> ProductMetricsResponse:
        result = await self._call(
            "GET", "/api/metrics/products", params=_window_params(from_date, to_date, account_ids),
        )
        return ProductMetricsResponse.model_validate(result or {})

    # ==================== Settings ====================

    async def fetch_project_groups(self) -> list[ProjectGroup]:
        result = await self._call("GET", "/api/project-groups")
        return [ProjectGroup.model_validate(g) for g in (result or [])]

    async def fetch_integrations(self) -> list[Integration]:
        result = await self._call("GET", "/api/integrations")
        return [Integration.model_validate(i) for i in (result or [])]

    # ==================== Sync ====================

    async def trigger_sync(self, account_id: str, from_date: Optional[str] = None) -> dict:
        """
        Ask the ingestion layer to re-sync one account from a date.
        A cooldown rejection comes back as 429 with
        {"error": "Sync cooldown: please wait 42s before syncing this account again"}.
        """
        payload = {"accountId": account_id}
        if from_date:
            payload["from"] = from_date
        return await self._call("POST", "/api/sync", data=payload)
