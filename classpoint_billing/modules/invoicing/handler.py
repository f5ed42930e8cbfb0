"""Queue entrypoint: one batch of records, processed strictly in order."""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpoint_billing.core.config import InvoicingConfig, settings
from classpoint_billing.core.logging import configure_logging
from classpoint_billing.integrations.eventbridge.client import EventPublisher, build_publisher
from classpoint_billing.modules.invoicing.events import (
    InvoiceTrigger,
    OverdueScanRequest,
    TriggerRejection,
    parse_record,
)
from classpoint_billing.modules.invoicing.service import InvoicingService, RecomputeResult

logger = logging.getLogger(__name__)


async def process_record(
    record: dict[str, Any],
    session_factory: async_sessionmaker[AsyncSession],
    config: InvoicingConfig,
    publisher: EventPublisher | None = None,
) -> RecomputeResult | None:
    """
    Process one queue record in its own session.

    Returns None for records that are skipped on purpose (overdue scan,
    missing ids). Malformed bodies and downstream failures raise.
    """
    message_id = record.get("messageId")
    trigger: InvoiceTrigger | OverdueScanRequest | TriggerRejection = parse_record(
        record.get("body"), message_id
    )

    if isinstance(trigger, OverdueScanRequest):
        logger.info("Overdue scan requested (record %s); not implemented, skipping", message_id)
        return None
    if isinstance(trigger, TriggerRejection):
        logger.warning("%s (record %s), skipping", trigger.reason, message_id)
        return None

    logger.info(
        "Processing record %s: invoice %s (%s)",
        message_id,
        trigger.invoice_id,
        trigger.detail_type or trigger.kind.value,
    )
    async with session_factory() as session:
        service = InvoicingService(session, config, publisher)
        return await service.recompute(trigger)


async def process_batch(
    records: Iterable[dict[str, Any]],
    session_factory: async_sessionmaker[AsyncSession],
    config: InvoicingConfig,
    publisher: EventPublisher | None = None,
    report_failures: bool = False,
) -> dict[str, Any]:
    """
    Process records one after another.

    By default the first failure is re-raised so the whole batch is
    redelivered. With ``report_failures`` every record is attempted and the
    failed ones are returned as SQS batch item failures.
    """
    failures: list[dict[str, str]] = []
    for record in records:
        message_id = record.get("messageId")
        try:
            await process_record(record, session_factory, config, publisher)
        except Exception:
            logger.exception("Failed processing record %s", message_id)
            if not report_failures:
                raise
            failures.append({"itemIdentifier": message_id})

    if report_failures:
        return {"batchItemFailures": failures}
    return {}


async def _handle(event: dict[str, Any]) -> dict[str, Any]:
    from classpoint_billing.core.database import async_session, engine

    try:
        return await process_batch(
            event.get("Records") or [],
            async_session,
            InvoicingConfig.from_settings(settings),
            build_publisher(settings),
            settings.report_batch_item_failures,
        )
    finally:
        # Each invocation gets a fresh event loop; pooled connections cannot outlive it
        await engine.dispose()


def lambda_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    configure_logging(settings.log_level)
    logger.info("Invoicing worker received %d record(s)", len(event.get("Records") or []))
    return asyncio.run(_handle(event))
