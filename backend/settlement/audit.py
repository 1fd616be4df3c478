"""
Audit trail entries written by the settlement engine.
"""
from __future__ import annotations

import uuid
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.enums import AuditAction, EventStatus
from shared.models.orm import AuditLogORM


def void_reason(status: EventStatus, voided_count: int, refunded_coins: int) -> str:
    return (
        f"Event {status.value}: Auto-voided {voided_count} predictions, "
        f"refunded {refunded_coins} coins"
    )


async def record_event_void(
    session: AsyncSession,
    event_id: uuid.UUID,
    status: EventStatus,
    pending_count: int,
    prediction_ids: Sequence[uuid.UUID],
    refunded_coins: int,
) -> AuditLogORM:
    """
    Append the summary entry for one event's auto-void run.

    ``changed_by`` is left empty: the action is taken by the system, not a
    moderator.
    """
    entry = AuditLogORM(
        table_name="events",
        record_id=event_id,
        action=AuditAction.VOID.value,
        old_values={"status": status.value, "pendingPredictions": pending_count},
        new_values={
            "voidedCount": len(prediction_ids),
            "refundedCoins": refunded_coins,
            "predictionIds": [str(pid) for pid in prediction_ids],
        },
        reason=void_reason(status, len(prediction_ids), refunded_coins),
        changed_by=None,
    )
    session.add(entry)
    await session.flush()
    return entry
