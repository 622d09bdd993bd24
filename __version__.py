# ============================================================================
# VERSION - TASKBRIDGE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# ============================================================================
"""
Version information for taskbridge.

This is the single source of truth for the SDK version. It is sent to the
control plane on every call (x-machine-sdk-version).
"""
# Version format: major.minor.patch
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-19"

EPOCH = 1
CODENAME = "Function Polling"
