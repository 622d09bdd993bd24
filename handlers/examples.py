# ============================================================================
# EXAMPLE FUNCTIONS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Examples - Sample function implementations
# PURPOSE: Demonstrate function registration with both schema forms
# CREATED: 19 OCT 2026
# ============================================================================
"""
Example Functions

Sample implementations showing how to declare functions. Loaded by the
worker entry point (TASKBRIDGE_FUNCTION_MODULES) and used for smoke tests.

    echo - pydantic input model, async handler
    sqrt - JSON-Schema input document, sync handler
"""

import logging
import math
from typing import Any, Dict

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SERVICE_NAME = "examples"


# ============================================================================
# INPUT MODELS
# ============================================================================

class EchoInput(BaseModel):
    text: str = Field(..., description="Text to echo back")


SQRT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "x": {"type": "number", "minimum": 0},
    },
    "required": ["x"],
    "additionalProperties": False,
}


# ============================================================================
# FUNCTIONS
# ============================================================================

async def echo(data: EchoInput) -> Dict[str, str]:
    """Echoes the input text."""
    logger.info(f"Echo called with {len(data.text)} characters")
    return {"echo": data.text}


def sqrt(data: Dict[str, Any]) -> Dict[str, float]:
    """Square root of a non-negative number."""
    return {"result": math.sqrt(data["x"])}


# ============================================================================
# REGISTRATION
# ============================================================================

def register_functions(client) -> None:
    """Declare the example functions on the 'examples' service of a client."""
    service = client.service(SERVICE_NAME)
    service.register(
        "echo",
        echo,
        EchoInput,
        description="Echoes the input text",
        config={"timeoutSeconds": 30},
    )
    service.register(
        "sqrt",
        sqrt,
        SQRT_SCHEMA,
        description="Square root of a non-negative number",
    )


__all__ = [
    "SERVICE_NAME",
    "EchoInput",
    "SQRT_SCHEMA",
    "echo",
    "sqrt",
    "register_functions",
]
