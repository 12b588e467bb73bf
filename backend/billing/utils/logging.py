"""Structured logging for transaction execution."""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class StructuredTransactionLogger:
    """Structured logger for transaction execution."""

    def log_outcome(
        self,
        span_name: str,
        kind: str,
        outcome: str,
        latency_ms: float,
        events_count: int = 0,
        ledger_commands_count: int = 0,
        error_type: str | None = None,
    ) -> None:
        """Log one executor invocation with structured data."""
        log_data: dict[str, Any] = {
            "span": span_name,
            "kind": kind,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            "events_count": events_count,
            "ledger_commands_count": ledger_commands_count,
        }

        if error_type:
            log_data["error_type"] = error_type

        log_msg = f"Transaction: {span_name} - {outcome}"

        if outcome == "ok":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
