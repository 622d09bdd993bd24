# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Infrastructure - Control plane access
# PURPOSE: HTTP client for the control plane REST API
# CREATED: 19 OCT 2026
# ============================================================================
"""
Infrastructure module for taskbridge.

Provides:
- ControlPlaneClient: aiohttp client for machines, jobs, results and blobs
- ApiResponse: status and decoded body of a call

Usage:
    from infrastructure import ControlPlaneClient

    client = ControlPlaneClient(endpoint, api_secret, machine_id)
    response = await client.acknowledge_job(job_id)
    if response.status != 204:
        ...
"""

from infrastructure.control_plane import (
    ApiResponse,
    ControlPlaneClient,
)

__all__ = [
    'ApiResponse',
    'ControlPlaneClient',
]
