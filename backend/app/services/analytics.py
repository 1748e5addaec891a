"""Analytics aggregator — read-only reporting views over the ledger.

Each report is an explicit, typed aggregation over scoped ledger rows
(see app.schemas.report).  Nothing here writes: every function reads
through a LedgerStore, groups in Python and returns a pydantic model, so
the same ledger snapshot and the same `now` always give the same result.

Conventions shared by all reports:
  - `region` narrows the caller's scope (AccessDenied for a scoped caller
    asking for another region).
  - `start` / `end` bound the delivery or payment date, inclusive.
  - `now` defaults to utcnow() and is injectable for tests.
  - Money is rounded to the cent only when reported.

full_report() runs every section independently: a failing section is
logged, its read transaction rolled back, and a zeroed section returned
alongside an entry in `errors`.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from statistics import mean

from app.config import settings
from app.middleware.exceptions import ValidationError
from app.models.delivery import Delivery, DeliveryType
from app.models.payment import Payment, PaymentStatus
from app.schemas.report import (
    AgingBucket,
    CashflowForecast,
    ComparativeAnalytics,
    DashboardSummary,
    DeliveryTypeAnalytics,
    DriverThroughput,
    FarmerPerformance,
    FarmerScorecard,
    ForecastDay,
    FullReport,
    MonthlySeries,
    OperationalMetrics,
    PaymentAnalytics,
    PendingObligation,
    PeriodComparison,
    PeriodGrowth,
    PeriodTotals,
    ReasonBreakdown,
    RecentActivity,
    RegionalProfitability,
    RegionStats,
    SectionError,
    StatusBreakdown,
    SummaryReport,
    TypeSeasonStats,
    TypeStats,
    UsageCounts,
    VoidedSummary,
)
from app.services.ledger import LedgerFilter, LedgerStore

logger = logging.getLogger("coffeetrack.analytics")

COMPLETED = PaymentStatus.COMPLETED.value
PENDING = PaymentStatus.PENDING.value

AGING_BUCKETS = ("0-30", "31-60", "60+")
SORT_KEYS = ("value", "reliability", "volume")
RECENT_DAYS = 30


# ── Helpers ──────────────────────────────────────────────────

def _money(value: float) -> float:
    return round(value or 0.0, 2)


def _avg(total: float, count: int) -> float:
    return total / count if count else 0.0


def growth_pct(current: float, previous: float) -> float:
    """Period-over-period growth in %; 0 when there is no previous value."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def aging_bucket(days: int) -> str:
    if days <= 30:
        return "0-30"
    if days <= 60:
        return "31-60"
    return "60+"


def _narrowed(store: LedgerStore, region: str | None) -> LedgerStore:
    """Store restricted to an explicitly requested region."""
    scope = store.scope.narrow(region)
    if scope is store.scope:
        return store
    return LedgerStore(store.db, scope)


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _shift_months(month_start: datetime, months: int) -> datetime:
    index = month_start.year * 12 + (month_start.month - 1) + months
    return month_start.replace(year=index // 12, month=index % 12 + 1)


# ── Summary ──────────────────────────────────────────────────

async def summary(
    store: LedgerStore,
    *,
    region: str | None = None,
) -> SummaryReport:
    """Headline counts: farmers, deliveries, pending payments."""
    store = _narrowed(store, region)
    farmers = await store.find_farmers()
    deliveries = await store.find_deliveries()
    unpaid = await store.find_deliveries(LedgerFilter(unpaid_only=True))
    payments = await store.find_payments()

    return SummaryReport(
        total_farmers=len(farmers),
        total_deliveries=len(deliveries),
        total_kgs=sum(d.kgs_delivered for d in deliveries),
        pending_payments=sum(1 for p in payments if p.status == PENDING),
        unpaid_deliveries=len(unpaid),
        total_paid=_money(sum(p.amount_paid for p in payments if p.status == COMPLETED)),
    )


async def dashboard_summary(
    store: LedgerStore,
    *,
    region: str | None = None,
    driver: str | None = None,
    delivery_type: str | None = None,
    day: datetime | None = None,
    now: datetime | None = None,
) -> DashboardSummary:
    """Dashboard cards, 6-month kgs trend and a recent-activity feed.

    Delivery figures honour every filter; payment figures honour the
    region only (payments carry no driver and span days).
    """
    now = now or datetime.utcnow()
    store = _narrowed(store, region)

    flt = LedgerFilter(driver=driver, type=delivery_type)
    if day is not None:
        flt.start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        flt.end = flt.start + timedelta(days=1) - timedelta(microseconds=1)

    farmers = await store.find_farmers()
    deliveries = await store.find_deliveries(flt, with_farmer=True)
    unpaid = await store.find_deliveries(
        LedgerFilter(driver=driver, type=delivery_type, start=flt.start, end=flt.end,
                     unpaid_only=True)
    )
    payments = await store.find_payments()

    status_counts = {s.value: 0 for s in PaymentStatus}
    for p in payments:
        status_counts[p.status] = status_counts.get(p.status, 0) + 1

    # Last six calendar months, oldest first
    first_month = _shift_months(_month_start(now), -5)
    months = [_shift_months(first_month, i) for i in range(6)]
    kgs_by_month: dict[tuple[int, int], float] = defaultdict(float)
    for d in deliveries:
        if d.date >= first_month:
            kgs_by_month[(d.date.year, d.date.month)] += d.kgs_delivered

    recent_deliveries = sorted(deliveries, key=lambda d: d.date, reverse=True)[:5]
    recent_payments = sorted(payments, key=lambda p: p.date, reverse=True)[:5]
    activities = [
        RecentActivity(
            date=d.date,
            farmer=d.farmer.name if d.farmer else "",
            metric=f"{d.kgs_delivered:g} kgs",
            kind="Delivery",
            status="Delivered",
        )
        for d in recent_deliveries
    ] + [
        RecentActivity(
            date=p.date,
            farmer=p.farmer.name if p.farmer else "",
            metric=f"{p.currency} {p.amount_paid:.2f}",
            kind="Payment",
            status=p.status,
        )
        for p in recent_payments
    ]
    activities.sort(key=lambda a: a.date, reverse=True)

    return DashboardSummary(
        total_farmers=len(farmers),
        kgs_delivered=sum(d.kgs_delivered for d in deliveries),
        total_paid=_money(sum(p.amount_paid for p in payments if p.status == COMPLETED)),
        pending_payments=status_counts[PENDING],
        unpaid_deliveries=len(unpaid),
        payments_status=status_counts,
        monthly_kgs=MonthlySeries(
            labels=[m.strftime("%b %Y") for m in months],
            values=[kgs_by_month.get((m.year, m.month), 0.0) for m in months],
        ),
        recent_activities=activities[:8],
    )


async def distinct_drivers(store: LedgerStore) -> list[str]:
    return await store.distinct_delivery_values("driver")


async def distinct_regions(store: LedgerStore) -> list[str]:
    return await store.distinct_delivery_values("region")


# ── Payment analytics ────────────────────────────────────────

async def payment_analytics(
    store: LedgerStore,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
    now: datetime | None = None,
) -> PaymentAnalytics:
    """Status breakdown, voids, success rate, velocity and Pending aging."""
    now = now or datetime.utcnow()
    store = _narrowed(store, region)
    payments = await store.find_payments(LedgerFilter(start=start, end=end))
    total = len(payments)

    by_status: dict[str, list[Payment]] = {s.value: [] for s in PaymentStatus}
    for p in payments:
        by_status.setdefault(p.status, []).append(p)
    breakdown = [
        StatusBreakdown(
            status=status,
            count=len(rows),
            total_amount=_money(sum(p.amount_paid for p in rows)),
        )
        for status, rows in by_status.items()
    ]

    voided = [p for p in payments if p.voided_at is not None]
    reasons: dict[str, list[Payment]] = defaultdict(list)
    for p in voided:
        reasons[p.void_reason or ""].append(p)
    by_reason = sorted(
        (
            ReasonBreakdown(
                reason=reason,
                count=len(rows),
                total_amount=_money(sum(p.amount_paid for p in rows)),
            )
            for reason, rows in reasons.items()
        ),
        key=lambda r: (-r.count, r.reason),
    )

    velocity = 0.0
    if payments:
        dates = [p.date for p in payments]
        span_days = (max(dates) - min(dates)).days
        velocity = round(total / max(1, span_days), 2)

    aging = {bucket: AgingBucket(bucket=bucket) for bucket in AGING_BUCKETS}
    for p in by_status[PENDING]:
        bucket = aging[aging_bucket((now - p.date).days)]
        bucket.count += 1
        bucket.total_amount = _money(bucket.total_amount + p.amount_paid)

    return PaymentAnalytics(
        total_payments=total,
        status_breakdown=breakdown,
        voided=VoidedSummary(
            count=len(voided),
            total_amount=_money(sum(p.amount_paid for p in voided)),
            by_reason=by_reason,
        ),
        success_rate=round(len(by_status[COMPLETED]) / total * 100, 2) if total else 0.0,
        payment_velocity=velocity,
        aging=list(aging.values()),
    )


# ── Cashflow forecast ────────────────────────────────────────

async def _average_price_by_type(store: LedgerStore) -> dict[str, float]:
    """Mean price_per_kg of Completed payments, per delivery type."""
    prices: dict[str, list[float]] = defaultdict(list)
    for p in await store.find_payments(LedgerFilter(status=COMPLETED)):
        prices[p.delivery_type].append(p.price_per_kg)
    return {t: mean(values) for t, values in prices.items()}


async def cashflow_forecast(
    store: LedgerStore,
    *,
    days: int = 30,
    region: str | None = None,
    now: datetime | None = None,
) -> CashflowForecast:
    """Projected payouts from the trailing run-rate plus what is still owed.

    historical_daily_average = Completed amount over the lookback window
    ÷ lookback days.  Pending obligation prices each unpaid delivery at
    the historical average for its type, or the configured default.
    """
    if days < 1:
        raise ValidationError("Forecast horizon must be at least one day", details={"days": days})
    now = now or datetime.utcnow()
    store = _narrowed(store, region)
    lookback = settings.forecast_lookback_days

    window = await store.find_payments(
        LedgerFilter(status=COMPLETED, start=now - timedelta(days=lookback), end=now)
    )
    historical_total = sum(p.amount_paid for p in window)
    daily_average = historical_total / lookback

    avg_prices = await _average_price_by_type(store)
    unpaid_kgs: dict[str, float] = defaultdict(float)
    for d in await store.find_deliveries(LedgerFilter(unpaid_only=True)):
        unpaid_kgs[d.type] += d.kgs_delivered

    obligations = []
    for delivery_type, kgs in sorted(unpaid_kgs.items()):
        if delivery_type in avg_prices:
            price, source = avg_prices[delivery_type], "historical"
        else:
            price, source = settings.default_price_per_kg.get(delivery_type, 0.0), "default"
        obligations.append(PendingObligation(
            type=delivery_type,
            unpaid_kgs=kgs,
            price_per_kg=round(price, 2),
            price_source=source,
            amount=_money(kgs * price),
        ))

    today = now.date()
    forecast = [
        ForecastDay(
            day=i,
            date=today + timedelta(days=i),
            expected_payout=_money(daily_average),
            cumulative_payout=_money(daily_average * i),
        )
        for i in range(1, days + 1)
    ]

    return CashflowForecast(
        lookback_days=lookback,
        historical_total=_money(historical_total),
        historical_daily_average=_money(daily_average),
        pending_obligation=_money(sum(o.amount for o in obligations)),
        pending_by_type=obligations,
        forecast=forecast,
    )


# ── Farmer performance ───────────────────────────────────────

async def farmer_performance(
    store: LedgerStore,
    *,
    sort_by: str = "value",
    limit: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
    now: datetime | None = None,
) -> FarmerPerformance:
    """Scorecards for every farmer with at least one delivery in range.

    reliability = deliveries ÷ (months since first delivery + 1) × 10,
    where a month is 30 days.  Sorted descending by total paid (value),
    reliability or total kgs (volume); ties by farmer name.
    """
    if sort_by not in SORT_KEYS:
        raise ValidationError(
            f"sort_by must be one of {', '.join(SORT_KEYS)}", details={"sort_by": sort_by},
        )
    now = now or datetime.utcnow()
    store = _narrowed(store, region)

    deliveries_by_farmer: dict[str, list[Delivery]] = defaultdict(list)
    for d in await store.find_deliveries(LedgerFilter(start=start, end=end)):
        deliveries_by_farmer[d.farmer_id].append(d)
    payments_by_farmer: dict[str, list[Payment]] = defaultdict(list)
    for p in await store.find_payments(LedgerFilter(status=COMPLETED, start=start, end=end)):
        payments_by_farmer[p.farmer_id].append(p)

    farmers = await store.find_farmers(LedgerFilter(ids=list(deliveries_by_farmer)))
    cards = []
    for farmer in farmers:
        rows = deliveries_by_farmer[farmer.id]
        paid = payments_by_farmer.get(farmer.id, [])
        first = min(d.date for d in rows)
        last = max(d.date for d in rows)
        total_kgs = sum(d.kgs_delivered for d in rows)
        total_paid = sum(p.amount_paid for p in paid)
        days_since_last = (now - last).days
        months_since_first = (now - first).days / 30

        cards.append(FarmerScorecard(
            farmer_id=farmer.id,
            name=farmer.name,
            weigh_station=farmer.weigh_station,
            total_deliveries=len(rows),
            total_kgs=total_kgs,
            avg_kgs_per_delivery=round(_avg(total_kgs, len(rows)), 2),
            first_delivery=first,
            last_delivery=last,
            total_paid=_money(total_paid),
            payment_count=len(paid),
            avg_payment=_money(_avg(total_paid, len(paid))),
            days_since_last_delivery=days_since_last,
            reliability_score=round(len(rows) / (months_since_first + 1) * 10, 2),
            status="inactive" if days_since_last > settings.inactive_after_days else "active",
            is_vip=total_paid > settings.vip_threshold,
        ))

    metric = {
        "value": lambda c: c.total_paid,
        "reliability": lambda c: c.reliability_score,
        "volume": lambda c: c.total_kgs,
    }[sort_by]
    cards.sort(key=lambda c: c.name)
    cards.sort(key=metric, reverse=True)
    if limit is not None:
        cards = cards[:limit]
    return FarmerPerformance(sort_by=sort_by, farmers=cards)


# ── Comparative analytics ────────────────────────────────────

def _period_totals(
    label: str,
    start: datetime,
    end: datetime,
    deliveries: list[Delivery],
    payments: list[Payment],
) -> PeriodTotals:
    """Totals for start <= date < end."""
    in_deliveries = [d for d in deliveries if start <= d.date < end]
    in_payments = [p for p in payments if start <= p.date < end]
    return PeriodTotals(
        label=label,
        start=start,
        end=end,
        kgs_delivered=sum(d.kgs_delivered for d in in_deliveries),
        delivery_count=len(in_deliveries),
        payment_amount=_money(sum(p.amount_paid for p in in_payments)),
        payment_count=len(in_payments),
    )


def _compare(current: PeriodTotals, previous: PeriodTotals) -> PeriodComparison:
    return PeriodComparison(
        current=current,
        previous=previous,
        growth=PeriodGrowth(
            kgs_delivered=growth_pct(current.kgs_delivered, previous.kgs_delivered),
            delivery_count=growth_pct(current.delivery_count, previous.delivery_count),
            payment_amount=growth_pct(current.payment_amount, previous.payment_amount),
            payment_count=growth_pct(current.payment_count, previous.payment_count),
        ),
    )


async def comparative_analytics(
    store: LedgerStore,
    *,
    region: str | None = None,
    now: datetime | None = None,
) -> ComparativeAnalytics:
    """Calendar month and calendar year to date vs. the full previous period."""
    now = now or datetime.utcnow()
    store = _narrowed(store, region)

    month_start = _month_start(now)
    prev_month_start = _shift_months(month_start, -1)
    year_start = datetime(now.year, 1, 1)
    prev_year_start = datetime(now.year - 1, 1, 1)
    # The current period includes `now` itself
    until = now + timedelta(microseconds=1)

    earliest = min(prev_month_start, prev_year_start)
    deliveries = await store.find_deliveries(LedgerFilter(start=earliest, end=now))
    payments = await store.find_payments(LedgerFilter(status=COMPLETED, start=earliest, end=now))

    return ComparativeAnalytics(
        month_over_month=_compare(
            _period_totals(month_start.strftime("%b %Y"), month_start, until, deliveries, payments),
            _period_totals(
                prev_month_start.strftime("%b %Y"), prev_month_start, month_start,
                deliveries, payments,
            ),
        ),
        year_over_year=_compare(
            _period_totals(str(now.year), year_start, until, deliveries, payments),
            _period_totals(str(now.year - 1), prev_year_start, year_start, deliveries, payments),
        ),
    )


# ── Delivery types ───────────────────────────────────────────

async def delivery_type_analytics(
    store: LedgerStore,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
) -> DeliveryTypeAnalytics:
    store = _narrowed(store, region)
    deliveries = await store.find_deliveries(LedgerFilter(start=start, end=end), with_farmer=True)
    payments = await store.find_payments(LedgerFilter(status=COMPLETED, start=start, end=end))

    known = [t.value for t in DeliveryType]
    types = sorted(set(known) | {d.type for d in deliveries} | {p.delivery_type for p in payments})

    stats = []
    for t in types:
        rows = [d for d in deliveries if d.type == t]
        paid = [p for p in payments if p.delivery_type == t]
        kgs = sum(d.kgs_delivered for d in rows)
        stats.append(TypeStats(
            type=t,
            delivery_count=len(rows),
            total_kgs=kgs,
            avg_kgs=round(_avg(kgs, len(rows)), 2),
            payment_count=len(paid),
            total_paid=_money(sum(p.amount_paid for p in paid)),
            avg_price_per_kg=round(mean(p.price_per_kg for p in paid), 2) if paid else 0.0,
        ))

    seasons: dict[tuple[str, str], list[Delivery]] = defaultdict(list)
    for d in deliveries:
        seasons[(d.type, d.farmer.season if d.farmer else "")].append(d)
    by_season = [
        TypeSeasonStats(
            type=t,
            season=season,
            delivery_count=len(rows),
            total_kgs=sum(d.kgs_delivered for d in rows),
        )
        for (t, season), rows in sorted(seasons.items())
    ]

    return DeliveryTypeAnalytics(types=stats, by_season=by_season)


# ── Regional profitability ───────────────────────────────────

async def regional_profitability(
    store: LedgerStore,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
    now: datetime | None = None,
) -> RegionalProfitability:
    """Completed payments grouped by the paying farmer's weigh station."""
    now = now or datetime.utcnow()
    store = _narrowed(store, region)
    payments = await store.find_payments(LedgerFilter(status=COMPLETED, start=start, end=end))
    recent_since = now - timedelta(days=RECENT_DAYS)

    by_region: dict[str, list[Payment]] = defaultdict(list)
    for p in payments:
        by_region[p.farmer.weigh_station].append(p)

    regions = []
    for name, rows in by_region.items():
        recent = [p for p in rows if p.date >= recent_since]
        regions.append(RegionStats(
            region=name,
            total_paid=_money(sum(p.amount_paid for p in rows)),
            total_kgs=sum(p.kgs_delivered for p in rows),
            payment_count=len(rows),
            avg_price_per_kg=round(mean(p.price_per_kg for p in rows), 2),
            farmer_count=len({p.farmer_id for p in rows}),
            recent_total_paid=_money(sum(p.amount_paid for p in recent)),
            recent_payment_count=len(recent),
        ))
    regions.sort(key=lambda r: (-r.total_paid, r.region))
    return RegionalProfitability(regions=regions)


# ── Operational metrics ──────────────────────────────────────

async def operational_metrics(
    store: LedgerStore,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
    top_drivers: int = 5,
    now: datetime | None = None,
) -> OperationalMetrics:
    """Payment cycle time, transaction size, driver throughput, 30-day usage.

    Cycle time is payment date minus the earliest linked delivery date,
    in days; negative cycles (back-dated payments) are ignored.
    """
    now = now or datetime.utcnow()
    store = _narrowed(store, region)
    completed = await store.find_payments(LedgerFilter(status=COMPLETED, start=start, end=end))

    linked_ids = {i for p in completed for i in (p.delivery_ids or [])}
    delivery_dates = {
        d.id: d.date for d in await store.find_deliveries(LedgerFilter(ids=linked_ids))
    } if linked_ids else {}
    cycles = []
    for p in completed:
        dates = [delivery_dates[i] for i in (p.delivery_ids or []) if i in delivery_dates]
        if not dates:
            continue
        cycle = (p.date - min(dates)).total_seconds() / 86400
        if cycle >= 0:
            cycles.append(cycle)

    throughput: dict[str, DriverThroughput] = {}
    for d in await store.find_deliveries(LedgerFilter(start=start, end=end)):
        row = throughput.setdefault(d.driver, DriverThroughput(driver=d.driver))
        row.delivery_count += 1
        row.total_kgs += d.kgs_delivered
    drivers = sorted(
        throughput.values(), key=lambda r: (-r.total_kgs, -r.delivery_count, r.driver),
    )[:top_drivers]

    since = now - timedelta(days=RECENT_DAYS)
    recent_deliveries = await store.find_deliveries(LedgerFilter(start=since, end=now))
    recent_payments = await store.find_payments(LedgerFilter(start=since, end=now))
    new_farmers = [f for f in await store.find_farmers() if f.created_at and f.created_at >= since]

    total_completed = sum(p.amount_paid for p in completed)
    return OperationalMetrics(
        avg_cycle_time_days=round(mean(cycles), 2) if cycles else 0.0,
        cycle_time_samples=len(cycles),
        avg_transaction_size=_money(_avg(total_completed, len(completed))),
        top_drivers=drivers,
        usage_30d=UsageCounts(
            deliveries=len(recent_deliveries),
            payments=len(recent_payments),
            farmers_registered=len(new_farmers),
            active_farmers=len({d.farmer_id for d in recent_deliveries}),
        ),
    )


# ── Composite ────────────────────────────────────────────────

async def full_report(
    store: LedgerStore,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    region: str | None = None,
    now: datetime | None = None,
) -> FullReport:
    """Every report in one response, best effort per section."""
    now = now or datetime.utcnow()
    # Scope errors abort the whole report; section failures do not
    store = _narrowed(store, region)

    sections = {
        "summary": lambda: summary(store),
        "payment_analytics": lambda: payment_analytics(store, start=start, end=end, now=now),
        "cashflow_forecast": lambda: cashflow_forecast(store, now=now),
        "farmer_performance": lambda: farmer_performance(
            store, start=start, end=end, limit=10, now=now,
        ),
        "comparative_analytics": lambda: comparative_analytics(store, now=now),
        "delivery_type_analytics": lambda: delivery_type_analytics(store, start=start, end=end),
        "regional_profitability": lambda: regional_profitability(
            store, start=start, end=end, now=now,
        ),
        "operational_metrics": lambda: operational_metrics(store, start=start, end=end, now=now),
    }

    report = FullReport(generated_at=now)
    for name, compute in sections.items():
        try:
            setattr(report, name, await compute())
        except Exception as exc:
            logger.exception("Report section %s failed", name)
            await store.db.rollback()
            report.errors.append(SectionError(section=name, message=str(exc) or type(exc).__name__))
    return report
