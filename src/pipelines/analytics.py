"""Pipeline analytics: win rate, per-stage dwell time and dashboard counters."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from contacts.models import Activity, Contact
from pipelines.models import Deal, DealStageHistory
from pipelines.services import get_pipeline

logger = logging.getLogger("dealflow")

MS_PER_DAY = Decimal(86_400_000)
_CENT = Decimal("0.01")
_ZERO = Decimal("0.00")


def _round2(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _duration_ms(entered_at: datetime, exited_at: datetime | None, now: datetime) -> Decimal:
    elapsed = (exited_at or now) - entered_at
    if elapsed < timedelta(0):
        return _ZERO
    return Decimal(elapsed // timedelta(microseconds=1)) / 1000


def win_rate(won: int, lost: int) -> Decimal:
    """Percentage of closed deals that were won, 0 when nothing is closed."""
    closed = won + lost
    if closed == 0:
        return _ZERO
    return _round2(Decimal(won) * 100 / Decimal(closed))


def compute_analytics(company, pipeline_id, *, now: datetime | None = None) -> dict:
    """Summarise one pipeline of *company*.

    Returns a dict with ``win_rate`` and ``per_stage_avg_days``, the latter
    listed in the pipeline's stage order. Entries still open are measured up
    to ``now`` (the call time by default), so an in-progress stage reports
    its elapsed duration so far.
    """
    pipeline = get_pipeline(company, pipeline_id)
    now = now or timezone.now()

    deals = Deal.objects.filter(company=company, pipeline=pipeline)
    status_counts = dict(
        deals.order_by().values("status").annotate(total=Count("id")).values_list("status", "total")
    )
    won = status_counts.get(Deal.Status.WON, 0)
    lost = status_counts.get(Deal.Status.LOST, 0)

    totals: dict = defaultdict(lambda: _ZERO)
    counts: dict = defaultdict(int)
    entries = (
        DealStageHistory.objects
        .filter(deal__company=company, deal__pipeline=pipeline)
        .values_list("stage_id", "entered_at", "exited_at")
    )
    for stage_id, entered_at, exited_at in entries.iterator():
        totals[stage_id] += _duration_ms(entered_at, exited_at, now)
        counts[stage_id] += 1

    per_stage = []
    for stage in pipeline.ordered_stages():
        count = counts.get(stage.pk, 0)
        avg_ms = totals[stage.pk] / count if count else _ZERO
        per_stage.append({
            "stage_id": stage.pk,
            "stage_name": stage.name,
            "avg_days": _round2(avg_ms / MS_PER_DAY),
        })

    logger.debug(
        "Analytics computed for pipeline %s: won=%d lost=%d stages=%d",
        pipeline.pk, won, lost, len(per_stage),
    )
    return {
        "pipeline_id": pipeline.pk,
        "won_count": won,
        "lost_count": lost,
        "win_rate": win_rate(won, lost),
        "per_stage_avg_days": per_stage,
    }


def compute_dashboard_stats(company, *, now: datetime | None = None) -> dict:
    """Headline counters for the company dashboard."""
    now = now or timezone.now()
    deal_totals = Deal.objects.filter(company=company).aggregate(
        open_deals=Count("id", filter=Q(status=Deal.Status.OPEN)),
        total_deal_value=Coalesce(
            Sum("amount"),
            Value(_ZERO),
            output_field=DecimalField(max_digits=16, decimal_places=2),
        ),
    )
    activities_due = (
        Activity.objects
        .filter(company=company, due_date__lte=now)
        .exclude(status=Activity.Status.DONE)
        .count()
    )
    return {
        "contacts_count": Contact.objects.filter(company=company).count(),
        "open_deals": deal_totals["open_deals"],
        "total_deal_value": deal_totals["total_deal_value"],
        "activities_due": activities_due,
    }
