from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from exam_portal.client.config import ClientSettings


class PortalApiError(Exception):
    """Non-2xx response or transport failure; status_code is 0 for the latter."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class PortalApi:
    """Async wrapper around the portal's HTTP routes."""

    def __init__(self, http: httpx.AsyncClient, token: str | None = None, prefix: str = "/api"):
        self._http = http
        self.token = token
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: ClientSettings | None = None, token: str | None = None) -> "PortalApi":
        settings = settings or ClientSettings()
        http = httpx.AsyncClient(base_url=settings.base_url, timeout=settings.request_timeout_seconds)
        return cls(http, token=token)

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, f"{self.prefix}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise PortalApiError(0, str(exc)) from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise PortalApiError(response.status_code, message)
        if not response.content:
            return None
        return response.json()

    async def login(self, email: str, password: str) -> dict:
        tokens = await self._request("POST", "/users/login", data={"username": email, "password": password})
        self.token = tokens["access_token"]
        return tokens

    async def profile(self) -> dict:
        return await self._request("GET", "/users/profile")

    async def get_exam(self, exam_id: str) -> dict:
        return await self._request("GET", f"/exams/{exam_id}")

    async def list_user_attempts(self, user_id: str) -> list[dict]:
        return await self._request("GET", f"/attempts/user/{user_id}")

    async def start_attempt(self, exam_id: str) -> dict:
        return await self._request("POST", "/attempts/start", json={"exam_id": exam_id})

    async def submit_attempt(self, attempt_id: str, answers: list[dict], end_time: datetime | None = None) -> dict:
        body: dict[str, Any] = {"answers": answers}
        if end_time is not None:
            body["end_time"] = end_time.isoformat()
        return await self._request("POST", f"/attempts/{attempt_id}/submit", json=body)

    async def abandon_attempt(self, attempt_id: str) -> dict:
        return await self._request("POST", f"/attempts/{attempt_id}/abandon")

    async def create_attempt(self, payload: dict) -> dict:
        return await self._request("POST", "/attempts", json=payload)
