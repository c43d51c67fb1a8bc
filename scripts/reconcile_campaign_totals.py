# app/scripts/reconcile_campaign_totals.py
"""Recompute campaign totals from successful donations.

Run after a partial settlement was logged (sequential-write fallback):

    python -m scripts.reconcile_campaign_totals --dry-run
"""
import argparse
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import AsyncSessionLocal
from models.campaign import Campaign
from models.donation import Donation, DonationStatus

logger = logging.getLogger(__name__)


@dataclass
class CampaignDrift:
    campaign_id: int
    recorded_amount: Decimal
    actual_amount: Decimal
    recorded_count: int
    actual_count: int


async def reconcile_campaign_totals(session: AsyncSession, dry_run: bool = False) -> List[CampaignDrift]:
    """Returns the campaigns whose stored totals disagree with their successful donations."""
    settled = (
        select(
            Donation.campaign_id.label("campaign_id"),
            func.coalesce(func.sum(Donation.amount), 0).label("total"),
            func.count(Donation.id).label("donors"),
        )
        .where(Donation.status == DonationStatus.SUCCESS)
        .group_by(Donation.campaign_id)
        .subquery()
    )
    rows = await session.execute(
        select(Campaign.id, Campaign.raised_amount, Campaign.donor_count, settled.c.total, settled.c.donors)
        .outerjoin(settled, settled.c.campaign_id == Campaign.id)
        .order_by(Campaign.id)
    )

    drifts = []
    for campaign_id, raised, count, total, donors in rows.all():
        actual_amount = Decimal(str(total or 0)).quantize(Decimal("0.01"))
        recorded_amount = Decimal(str(raised or 0)).quantize(Decimal("0.01"))
        actual_count = int(donors or 0)
        if recorded_amount == actual_amount and int(count or 0) == actual_count:
            continue
        drifts.append(CampaignDrift(campaign_id, recorded_amount, actual_amount, int(count or 0), actual_count))

    for drift in drifts:
        logger.warning(
            f"Campaign {drift.campaign_id}: raised {drift.recorded_amount} -> {drift.actual_amount}, "
            f"donors {drift.recorded_count} -> {drift.actual_count}"
        )
        if not dry_run:
            await _recompute_totals(session, drift.campaign_id)

    return drifts


async def _recompute_totals(session: AsyncSession, campaign_id: int) -> None:
    """Rewrite one campaign's totals from its successful donations.

    Sums are taken inside the UPDATE, after the row lock: settlements committed
    after the drift scan are included.
    """
    settled = (Donation.campaign_id == Campaign.id, Donation.status == DonationStatus.SUCCESS)
    total = (
        select(func.coalesce(func.sum(Donation.amount), 0))
        .where(*settled)
        .correlate(Campaign)
        .scalar_subquery()
    )
    donors = select(func.count(Donation.id)).where(*settled).correlate(Campaign).scalar_subquery()

    # waits for any in-flight settlement holding this campaign
    await session.execute(select(Campaign.id).where(Campaign.id == campaign_id).with_for_update())
    await session.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(raised_amount=total, donor_count=donors)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def main(dry_run: bool) -> None:
    async with AsyncSessionLocal() as session:
        drifts = await reconcile_campaign_totals(session, dry_run=dry_run)
    if not drifts:
        print("✅ All campaign totals match their settled donations")
    elif dry_run:
        print(f"⚠️ {len(drifts)} campaign(s) drifted (dry run, nothing written)")
    else:
        print(f"✅ {len(drifts)} campaign(s) corrected")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recompute campaign totals from successful donations")
    parser.add_argument("--dry-run", action="store_true", help="report drift without writing")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(args.dry_run))
