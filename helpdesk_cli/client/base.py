"""Base HTTP Client for the Helpdesk API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class HelpdeskAPIError(Exception):
    """Base exception for Helpdesk API errors"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class APIClient:
    """HTTP client for the Helpdesk API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Unwrap the success envelope or raise with the server's error message"""
        try:
            data = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise HelpdeskAPIError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
            ) from None

        if response.status_code >= 400:
            error = data.get("error") or {}
            error_msg = error.get("message", "Unknown error")
            console.print(Panel(f"[red]{error_msg}[/red]", title="API Error"))
            raise HelpdeskAPIError(
                f"API Error {response.status_code}: {error_msg}",
                status_code=response.status_code,
            )

        if "ok" in data:
            if not data.get("ok", False):
                error_msg = (data.get("error") or {}).get("message", "Request failed")
                console.print(Panel(f"[red]{error_msg}[/red]", title="Request Failed"))
                raise HelpdeskAPIError(error_msg, status_code=response.status_code)
            return data.get("data", {})

        return data

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            # Merge request-specific headers with default headers
            request_headers = {**self.default_headers, **(headers or {})}
            response = self.client.request(
                method, f"/v1{path}", params=params, json=json, headers=request_headers
            )
            return self._handle_response(response)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise HelpdeskAPIError(f"Connection failed: {e}") from None

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request"""
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make POST request"""
        return self.request("POST", path, params=params, json=json)

    def patch(self, path: str, json: dict[str, Any]) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
