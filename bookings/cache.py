from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from bookings.settings import REDIS_URL, WIZARD_TTL_SECONDS
from bookings.wizard import WizardState

_redis: Redis | None = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _wizard_key(wizard_id: UUID) -> str:
    return f"wizard:{wizard_id}"


async def load_wizard(wizard_id: UUID) -> WizardState | None:
    """Stored snapshot, or None when it expired or was discarded."""
    data = await get_redis().get(_wizard_key(wizard_id))
    if not data:
        return None
    return WizardState.model_validate_json(data)


async def save_wizard(state: WizardState) -> None:
    # Refresh the TTL on every write so an active flow never expires mid-way.
    await get_redis().setex(_wizard_key(state.id), WIZARD_TTL_SECONDS, state.model_dump_json())


async def discard_wizard(wizard_id: UUID) -> None:
    try:
        await get_redis().delete(_wizard_key(wizard_id))
    except Exception:
        # The booking already exists; an orphaned snapshot simply expires.
        logger.opt(exception=True).warning("Redis delete failed for wizard {}", wizard_id)
