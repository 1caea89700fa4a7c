"""
Operator Guard for FastAPI.
Only operators holding the configured token may inspect or run upgrades.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request

from diamond_upgrader.api.services.upgrade_service import UpgradeContext
from diamond_upgrader.core.config import settings
from diamond_upgrader.core.logging import get_logger

logger = get_logger(__name__)

OPERATOR_TOKEN_HEADER = "X-Operator-Token"


async def require_operator(
    x_operator_token: Optional[str] = Header(None, alias=OPERATOR_TOKEN_HEADER),
) -> str:
    """Dependency checking the operator token header."""
    if not settings.OPERATOR_TOKEN:
        raise HTTPException(
            status_code=503,
            detail={
                "message": "Operator access is not configured",
                "error": "OPERATOR_TOKEN_UNSET",
            },
        )

    if not x_operator_token or not hmac.compare_digest(x_operator_token, settings.OPERATOR_TOKEN):
        logger.warning("Rejected request with invalid operator token")
        raise HTTPException(
            status_code=401,
            detail={
                "message": "Invalid operator token",
                "error": "INVALID_OPERATOR_TOKEN",
            },
        )
    return "operator"


def get_upgrade_context(request: Request) -> UpgradeContext:
    """Dependency returning the upgrade context built at startup."""
    return request.app.state.upgrade_context
