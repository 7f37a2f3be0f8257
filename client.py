import requests
from typing import Optional


class TrainingsClient:
    """Simple REST client for the trainings server."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000/api",
        timeout: float = 10.0,
        token: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_latest_trainings(self, current_version: Optional[str] = None) -> list:
        """Return the raw plan payloads published by the server."""
        params = {"version": current_version} if current_version else None
        resp = requests.get(
            f"{self.base_url}/trainings/latest",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json()
        if isinstance(body, dict) and ("success" in body or "data" in body):
            if body.get("success") is False:
                raise ValueError(body.get("error") or "server reported failure")
            body = body.get("data") or []
        if isinstance(body, dict):
            body = [body]
        if not isinstance(body, list):
            raise ValueError("unexpected trainings payload")
        return body

    def post_exercise_data(self, payload: dict) -> dict:
        resp = requests.post(
            f"{self.base_url}/user/exercise-data",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json() if resp.content else {}
        if isinstance(body, dict) and body.get("success") is False:
            raise ValueError(body.get("error") or "server reported failure")
        return body
