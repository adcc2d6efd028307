"""Shared-secret guard for merchant-only ledger mutations."""

import secrets

from fastapi import Header, HTTPException, Request, status
from loguru import logger

from sbt_rewards.core.settings import settings


async def require_merchant_api_key(
    request: Request,
    x_api_key: str = Header("", alias="X-API-Key"),
) -> None:
    """No-op until ``MERCHANT_API_KEY`` is configured (single-operator local installs)."""

    expected = settings.merchant_api_key
    if not expected:
        return

    if not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("Merchant API key rejected", path=request.url.path, method=request.method)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
