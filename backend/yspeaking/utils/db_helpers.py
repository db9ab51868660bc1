"""
Database helper functions to reduce code duplication in routes.
"""

import asyncio
import logging
from typing import Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from yspeaking.config import settings
from yspeaking.utils.exceptions import raise_internal_error, raise_not_found, raise_unauthorized

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DeclarativeBase)


# ============================================================================
# Lookup Helpers
# ============================================================================


async def get_or_404(
    session: AsyncSession,
    model: Type[T],
    id: str,
    resource: Optional[str] = None,
) -> T:
    """
    Fetch a record by its public `id` column or raise 404.

    Args:
        session: Database session
        model: SQLAlchemy model class with an `id` column
        id: Public identifier to fetch
        resource: Resource name for the error message (default: model name)

    Returns:
        The fetched record

    Raises:
        HTTPException: 404 if record not found
    """
    result = await session.execute(select(model).where(model.id == id))
    obj = result.scalar_one_or_none()

    if not obj:
        raise_not_found(resource or model.__name__.replace("Record", ""), id)
    return obj


# ============================================================================
# Mock Scenario Helpers
# ============================================================================


async def simulate_scenario(scenario: Optional[str]) -> None:
    """
    Apply the configured latency and an optional failure scenario.

    - timeout: long delay before answering
    - error: HTTP 500
    - 401: HTTP 401
    """
    if scenario == "timeout":
        await asyncio.sleep(settings.mock_timeout_delay)
    elif scenario == "error":
        raise_internal_error("Mocked 500")
    elif scenario == "401":
        raise_unauthorized("Mocked 401")
    elif scenario:
        logger.debug(f"Ignoring unknown scenario '{scenario}'")

    if settings.mock_latency_ms:
        await asyncio.sleep(settings.mock_latency_ms / 1000)
