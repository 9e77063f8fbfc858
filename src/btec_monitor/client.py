"""HTTP client for the remote generation service."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import httpx

from .config import TrackerConfig
from .errors import NetworkError, NotFoundError, RemoteError
from .models import Assignment, GenerationJob

logger = logging.getLogger(__name__)


class GenerationClient:
    """Talks to the generation and assignment endpoints."""

    def __init__(self, config: TrackerConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self.http = httpx.AsyncClient(
            base_url=config.api_url.rstrip("/"),
            headers=headers,
            timeout=config.request_timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.http.aclose()

    async def _request(self, method: str, path: str, json: Optional[Dict] = None) -> Any:
        try:
            resp = await self.http.request(method, path, json=json)
        except httpx.TransportError as e:
            raise NetworkError(f"Generation service unavailable: {e}") from e

        if resp.status_code == 404:
            message, code = _error_details(resp)
            raise NotFoundError(message or f"Not found: {path}", code=code)
        if resp.is_error:
            message, code = _error_details(resp)
            raise RemoteError(
                message or f"Request failed with status {resp.status_code}",
                status_code=resp.status_code,
                code=code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(
                f"Malformed response from {path}: {e}", status_code=resp.status_code
            ) from e

    async def start(self, assignment_id: str) -> str:
        """Start generation and return the new job id."""
        data = await self._request("POST", "/generation/start", json={"assignmentId": assignment_id})
        job_id = (data or {}).get("jobId") or (data or {}).get("id")
        if not job_id:
            raise RemoteError("Generation service did not return a job id")
        logger.info(f"Started generation job {job_id} for assignment {assignment_id}")
        return job_id

    async def get_status(self, job_id: str) -> GenerationJob:
        data = await self._request("GET", f"/generation/status/{job_id}")
        with _parsing("job status"):
            return GenerationJob.from_dict(data)

    async def pause(self, job_id: str):
        await self._request("POST", f"/generation/pause/{job_id}")

    async def resume(self, job_id: str):
        await self._request("POST", f"/generation/resume/{job_id}")

    async def cancel(self, job_id: str):
        await self._request("POST", f"/generation/cancel/{job_id}")

    async def retry(self, job_id: str):
        await self._request("POST", f"/generation/retry/{job_id}")

    async def list_assignments(self) -> List[Assignment]:
        data = await self._request("GET", "/assignments")
        # The backend answers either a bare list or {"assignments": [...]}
        with _parsing("assignment list"):
            items = data if isinstance(data, list) else (data or {}).get("assignments", [])
            return [Assignment.from_dict(item) for item in items]

    async def get_assignment(self, assignment_id: str) -> Assignment:
        data = await self._request("GET", f"/assignments/{assignment_id}")
        if isinstance(data, dict) and "assignment" in data:
            data = data["assignment"]
        with _parsing("assignment"):
            return Assignment.from_dict(data)


@contextmanager
def _parsing(what: str):
    """Turn a payload that does not fit the models into a RemoteError."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug(f"Could not parse {what}: {e!r}")
        raise RemoteError(f"Malformed {what} response: {e}") from e


def _error_details(resp: httpx.Response):
    """Pull (message, code) out of an error body."""
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or None), None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message"), error.get("code")
    if isinstance(error, str):
        return error, None
    return body.get("message"), None
