"""Delete everything stored for one device."""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, or_
from sqlmodel import Session, col

from lumen.models.content import Message, Response
from lumen.models.migration import MigrationToken
from lumen.models.stats import UserStats
from lumen.services.device_hash import hash_device_id
from lumen.services.journey_service import detach_device_from_journey

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    messages: int = 0
    responses: int = 0
    user_stats: int = 0
    migration_tokens: int = 0
    left_journey: bool = False


def _delete_owned(session: Session, model, device_id: str, device_hash: str) -> int:
    result = session.exec(
        delete(model)
        .where(or_(col(model.device_id) == device_id, col(model.device_hash) == device_hash))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def purge_device_data(session: Session, device_id: str) -> PurgeResult:
    """Remove the device's content, stats and tokens, then detach it from its journey.

    Both the hashed and the legacy raw-id keys are purged.
    """
    device_hash = hash_device_id(device_id)
    result = PurgeResult()

    result.responses = _delete_owned(session, Response, device_id, device_hash)
    result.messages = _delete_owned(session, Message, device_id, device_hash)
    result.user_stats = session.exec(
        delete(UserStats)
        .where(col(UserStats.device_key).in_([device_hash, device_id]))
        .execution_options(synchronize_session=False)
    ).rowcount
    result.migration_tokens = session.exec(
        delete(MigrationToken)
        .where(col(MigrationToken.from_device_hash) == device_hash)
        .execution_options(synchronize_session=False)
    ).rowcount
    session.commit()

    result.left_journey = detach_device_from_journey(session, device_id) is not None

    logger.info(
        "Purged device %s: %d messages, %d responses, %d stats, %d tokens, left_journey=%s",
        device_hash[:12], result.messages, result.responses,
        result.user_stats, result.migration_tokens, result.left_journey,
    )
    return result
