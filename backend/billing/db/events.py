"""Repository for event persistence."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.db.models import Event, new_id, utcnow
from backend.billing.models.effects import EventInsert


async def insert_events_skipping_existing(
    session: AsyncSession,
    events: list[EventInsert],
) -> list[str]:
    """Insert events, skipping any whose hash is already stored.

    A hash repeated within the batch is inserted once, in first-seen order.

    Args:
        session: Transaction handle
        events: Events in emission order

    Returns:
        IDs of the inserted events, in emission order
    """
    if not events:
        return []

    hashes = [event.hash for event in events]
    result = await session.execute(select(Event.hash).where(Event.hash.in_(hashes)))
    seen = set(result.scalars().all())

    rows: list[Event] = []
    for event in events:
        if event.hash in seen:
            continue
        seen.add(event.hash)
        rows.append(
            Event(
                id=new_id("evt"),
                hash=event.hash,
                type=event.type,
                organization_id=event.organization_id,
                livemode=event.livemode,
                payload=event.payload,
                occurred_at=utcnow(),
            )
        )

    session.add_all(rows)
    await session.flush()
    return [row.id for row in rows]


async def count_events(session: AsyncSession, organization_id: str | None = None) -> int:
    """Count stored events, optionally for one organization."""
    query = select(func.count()).select_from(Event)
    if organization_id is not None:
        query = query.where(Event.organization_id == organization_id)
    result = await session.execute(query)
    return int(result.scalar_one())
