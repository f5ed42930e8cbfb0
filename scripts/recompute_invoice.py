#!/usr/bin/env python3
"""
Recompute one invoice outside the queue.

Usage:
    python scripts/recompute_invoice.py --school-id S --invoice-id I --dry-run
    python scripts/recompute_invoice.py --school-id S --invoice-id I
"""

import asyncio
import sys
from pathlib import Path

# Project root on PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from classpoint_billing.core.config import InvoicingConfig, settings
from classpoint_billing.core.database.session import async_session, engine
from classpoint_billing.core.logging import configure_logging
from classpoint_billing.integrations.eventbridge.client import build_publisher
from classpoint_billing.modules.invoicing.service import InvoicingService


def print_totals(totals) -> None:
    for key, value in totals.as_dict().items():
        print(f"  {key:<18} {value}")


async def preview(school_id: str, invoice_id: str) -> int:
    async with async_session() as session:
        service = InvoicingService(session, InvoicingConfig.from_settings(settings))
        result = await service.preview(school_id, invoice_id)
        await session.rollback()

    if result is None:
        print(f"Invoice {invoice_id} not found for school {school_id}")
        return 1

    print(f"\nInvoice {invoice_id} (dry run, nothing written)")
    print_totals(result.totals)
    if result.planned_slots:
        print("\nInstallment plan to create:")
        for slot in result.planned_slots:
            print(f"  #{slot.sequence_no}  {slot.amount}  due {slot.due_at.date()}")
    for sequence_no, status in sorted(result.installment_statuses.items()):
        print(f"  installment #{sequence_no}: {status}")
    return 0


async def recompute(school_id: str, invoice_id: str) -> int:
    async with async_session() as session:
        service = InvoicingService(
            session, InvoicingConfig.from_settings(settings), build_publisher(settings)
        )
        result = await service.recompute_invoice(school_id, invoice_id)

    if not result.found:
        print(f"Invoice {invoice_id} not found for school {school_id}")
        return 1

    print(f"\nInvoice {invoice_id} recomputed")
    print_totals(result.totals)
    print(f"  lines created      {result.lines_created}")
    print(f"  plan created       {result.plan_created}")
    print(f"  events emitted     {len(result.events)}")
    return 0


async def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Recompute a single invoice")
    parser.add_argument("--school-id", required=True, help="Tenant (school) id")
    parser.add_argument("--invoice-id", required=True, help="Invoice id")
    parser.add_argument("--dry-run", action="store_true", help="Print totals, write nothing")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    print(f"Environment: {settings.app_env}")
    print(
        f"Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'unknown'}"
    )

    try:
        if args.dry_run:
            code = await preview(args.school_id, args.invoice_id)
        else:
            code = await recompute(args.school_id, args.invoice_id)
    finally:
        await engine.dispose()
    sys.exit(code)


if __name__ == "__main__":
    asyncio.run(main())
