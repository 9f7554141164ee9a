"""
Operator authentication for issuance endpoints.

Issuance is restricted to holders of the shared operator API key sent in
``X-Api-Key``. Verification endpoints are public.
"""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from certchain.core.config import get_settings
from certchain.core.logging import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-Api-Key", auto_error=False)


async def require_operator(
    api_key: Annotated[str | None, Depends(api_key_header)],
) -> str:
    """Dependency that requires the operator API key."""
    expected = get_settings().operator_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator API key is not configured",
        )
    if not api_key or not hmac.compare_digest(api_key.encode(), expected.encode()):
        logger.warning("operator_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return "operator"


# Type alias for dependency injection
Operator = Annotated[str, Depends(require_operator)]
