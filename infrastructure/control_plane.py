# ============================================================================
# CONTROL PLANE HTTP CLIENT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Infrastructure - Async HTTP client for the control plane
# PURPOSE: Register machines, acknowledge jobs, persist results and blobs
# CREATED: 19 OCT 2026
# ============================================================================
"""
Control Plane HTTP Client

Async aiohttp client for the control plane's REST API. Every call carries
the API secret and the machine identity header.

All methods return an ApiResponse (status, body) - the caller decides
which statuses are fatal. Connection failures map to 502, timeouts to 504.

Endpoints:
    POST /machines                  register machine, returns queue credentials
    PUT  /jobs/{job_id}/acknowledge -> 204
    POST /jobs/{job_id}/result      -> 204
    POST /jobs/{job_id}/blobs       -> 201
    POST /ping-cluster              heartbeat
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import aiohttp

from __version__ import __version__
from core.contracts import FunctionDescriptor, ResultType
from worker.codec import Blob

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class ApiResponse:
    """Status and decoded body of a control-plane call."""
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ControlPlaneClient:
    """Async HTTP client for the control plane."""

    def __init__(
        self,
        endpoint: str,
        api_secret: str,
        machine_id: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize client.

        Args:
            endpoint: Base URL of the control plane
            api_secret: API secret sent as the authorization header
            machine_id: Machine identity sent on every call
            timeout_seconds: Total timeout per request
        """
        self._endpoint = endpoint.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

        authorization = api_secret
        if not api_secret.lower().startswith("bearer "):
            authorization = f"Bearer {api_secret}"

        self._headers = {
            "authorization": authorization,
            "x-machine-id": machine_id,
            "x-machine-sdk-version": __version__,
            "x-machine-sdk-language": "python",
        }

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers=self._headers,
            )
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Any] = None,
    ) -> ApiResponse:
        url = f"{self._endpoint}{path}"

        try:
            session = await self._get_session()
            async with session.request(method, url, json=json_body) as response:
                text = await response.text()

            body: Any = None
            if text:
                try:
                    body = json.loads(text)
                except ValueError:
                    body = text

            if response.status >= 400:
                logger.debug(f"Control plane {method} {path} -> {response.status}: {str(body)[:500]}")

            return ApiResponse(response.status, body)

        except asyncio.TimeoutError as e:
            logger.warning(f"Control plane timeout: {method} {path}")
            return ApiResponse(504, {"error": "Control plane timeout", "detail": str(e)})
        except aiohttp.ClientError as e:
            logger.warning(f"Cannot reach control plane at {url}: {e}")
            return ApiResponse(502, {"error": "Control plane unreachable", "detail": str(e)})

    # ------------------------------------------------------------------
    # MACHINES
    # ------------------------------------------------------------------

    async def create_machine(
        self,
        service: str,
        functions: List[Union[FunctionDescriptor, Dict[str, Any]]],
    ) -> ApiResponse:
        """POST /machines"""
        payload = {
            "service": service,
            "functions": [
                f.to_wire() if isinstance(f, FunctionDescriptor) else f
                for f in functions
            ],
        }
        return await self._request("POST", "/machines", json_body=payload)

    async def ping_cluster(self, services: List[str]) -> ApiResponse:
        """POST /ping-cluster"""
        return await self._request(
            "POST", "/ping-cluster", json_body={"services": list(services)}
        )

    # ------------------------------------------------------------------
    # JOBS
    # ------------------------------------------------------------------

    async def acknowledge_job(self, job_id: str) -> ApiResponse:
        """PUT /jobs/{job_id}/acknowledge"""
        return await self._request("PUT", f"/jobs/{quote(job_id, safe='')}/acknowledge")

    async def create_result(
        self,
        job_id: str,
        result: str,
        result_type: Union[ResultType, str],
        function_execution_time: int,
    ) -> ApiResponse:
        """POST /jobs/{job_id}/result"""
        payload = {
            "result": result,
            "resultType": ResultType(result_type).value,
            "functionExecutionTime": int(function_execution_time),
        }
        return await self._request(
            "POST", f"/jobs/{quote(job_id, safe='')}/result", json_body=payload
        )

    async def create_blob(self, job_id: str, blob: Blob) -> ApiResponse:
        """POST /jobs/{job_id}/blobs"""
        return await self._request(
            "POST", f"/jobs/{quote(job_id, safe='')}/blobs", json_body=blob.to_wire()
        )

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ApiResponse",
    "ControlPlaneClient",
]
