"""API Endpoint Wrappers - typed calls against the admin API"""

from typing import Any

from .base import APIClient, HelpdeskAPIError
from ..utils.config_manager import config

__all__ = ["HelpdeskClient", "HelpdeskAPIError"]


class HelpdeskClient:
    """High-level client with one method per admin endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        return self.api.get("/healthz")

    # Jobs
    def enqueue_job(
        self, job_type: str, data: dict[str, Any], max_attempts: int | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"type": job_type, "data": data}
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        return self.api.post("/jobs", body)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}")

    def get_job_stats(self) -> dict[str, Any]:
        return self.api.get("/jobs/stats/overview")

    def process_jobs(self, max_jobs_per_type: int | None = None) -> dict[str, Any]:
        """Run one drain pass over every queue"""
        params = {}
        if max_jobs_per_type is not None:
            params["max_jobs_per_type"] = max_jobs_per_type
        return self.api.post("/jobs/process", params=params)

    # Dead letters
    def list_failed_jobs(
        self,
        type: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"offset": offset}
        if type:
            params["type"] = type
        if date_from:
            params["date_from"] = date_from
        if date_to:
            params["date_to"] = date_to
        if limit is not None:
            params["limit"] = limit
        return self.api.get("/jobs/failed", params)

    def retry_failed_job(self, failed_job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/failed/{failed_job_id}/retry")

    def delete_failed_job(self, failed_job_id: str) -> dict[str, Any]:
        return self.api.delete(f"/jobs/failed/{failed_job_id}")

    # Automation rules
    def list_rules(self, org_id: str) -> list[dict[str, Any]]:
        return self.api.get(f"/orgs/{org_id}/automation/rules")

    def create_default_rules(self, org_id: str) -> list[dict[str, Any]]:
        return self.api.post(f"/orgs/{org_id}/automation/rules/defaults")

    def set_rule_enabled(self, org_id: str, rule_id: str, enabled: bool) -> dict[str, Any]:
        return self.api.patch(
            f"/orgs/{org_id}/automation/rules/{rule_id}", {"enabled": enabled}
        )

    def delete_rule(self, org_id: str, rule_id: str) -> dict[str, Any]:
        return self.api.delete(f"/orgs/{org_id}/automation/rules/{rule_id}")
