"""Ledger command processing inside the producing transaction."""

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.db.models import LedgerEntry, LedgerTransaction, new_id, utcnow
from backend.billing.errors import EffectsPersistenceError
from backend.billing.models.effects import LedgerCommand, LedgerTransactionType

logger = logging.getLogger(__name__)

LedgerCommandHandler = Callable[[LedgerCommand, AsyncSession], Awaitable[LedgerTransaction]]


async def record_ledger_transaction(
    command: LedgerCommand, session: AsyncSession
) -> LedgerTransaction:
    """Write a ledger transaction and its entries for a command.

    Args:
        command: Ledger command
        session: Transaction handle

    Returns:
        The flushed ledger transaction
    """
    ledger_transaction = LedgerTransaction(
        id=new_id("ltx"),
        organization_id=command.organization_id,
        livemode=command.livemode,
        type=command.type.value,
        subscription_id=command.subscription_id,
        description=command.description,
        initiating_source_id=command.initiating_source_id,
        created_at=utcnow(),
    )
    session.add(ledger_transaction)
    # Parent row must exist before entries reference it
    await session.flush()

    session.add_all(
        [
            LedgerEntry(
                id=new_id("led"),
                ledger_transaction_id=ledger_transaction.id,
                ledger_account_id=entry.ledger_account_id,
                organization_id=command.organization_id,
                livemode=command.livemode,
                direction=entry.direction,
                amount=entry.amount,
                entry_type=entry.entry_type,
                source_id=entry.source_id,
                created_at=utcnow(),
            )
            for entry in command.entries
        ]
    )
    await session.flush()
    return ledger_transaction


_handlers: dict[LedgerTransactionType, LedgerCommandHandler] = {
    command_type: record_ledger_transaction for command_type in LedgerTransactionType
}


def register_ledger_handler(
    command_type: LedgerTransactionType, handler: LedgerCommandHandler | None
) -> LedgerCommandHandler | None:
    """Install a handler for a command type.

    Passing None unregisters the type; its commands then fail with
    EffectsPersistenceError.

    Returns:
        The previously installed handler (or None), so callers can restore it
    """
    if handler is None:
        return _handlers.pop(command_type, None)
    previous = _handlers.get(command_type)
    _handlers[command_type] = handler
    return previous


async def process_ledger_command(command: LedgerCommand, session: AsyncSession) -> None:
    """Dispatch a ledger command to its handler.

    Raises:
        EffectsPersistenceError: If no handler exists for the command type
    """
    handler = _handlers.get(command.type)
    if handler is None:
        raise EffectsPersistenceError(f"Unsupported ledger command type: {command.type}")

    ledger_transaction = await handler(command, session)
    logger.debug(
        "Ledger command processed",
        extra={
            "structured": {
                "type": command.type.value,
                "ledger_transaction_id": ledger_transaction.id,
                "entries": len(command.entries),
            }
        },
    )


async def count_ledger_transactions(
    session: AsyncSession, organization_id: str | None = None
) -> int:
    """Count stored ledger transactions, optionally for one organization."""
    query = select(func.count()).select_from(LedgerTransaction)
    if organization_id is not None:
        query = query.where(LedgerTransaction.organization_id == organization_id)
    result = await session.execute(query)
    return int(result.scalar_one())
