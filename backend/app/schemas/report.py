"""Pydantic schemas for analytics reports.

Every report is a typed model tagged with a `report` literal so a
composite response (FullReport) is a set of well-known sections rather
than a dynamically shaped object.  All numeric fields default to zero so
a failed section can be returned as an empty-but-valid model.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


# ── Summary / dashboard ──────────────────────────────────────

class SummaryReport(BaseModel):
    report: Literal["summary"] = "summary"
    total_farmers: int = 0
    total_deliveries: int = 0
    total_kgs: float = 0.0
    pending_payments: int = 0
    unpaid_deliveries: int = 0
    total_paid: float = 0.0


class MonthlySeries(BaseModel):
    labels: list[str] = []
    values: list[float] = []


class RecentActivity(BaseModel):
    date: datetime
    farmer: str
    metric: str             # "120 kgs" / "KES 6000.00"
    kind: Literal["Delivery", "Payment"]
    status: str


class DashboardSummary(BaseModel):
    report: Literal["dashboard"] = "dashboard"
    total_farmers: int = 0
    kgs_delivered: float = 0.0
    total_paid: float = 0.0
    pending_payments: int = 0
    unpaid_deliveries: int = 0
    payments_status: dict[str, int] = {}
    monthly_kgs: MonthlySeries = Field(default_factory=MonthlySeries)
    recent_activities: list[RecentActivity] = []


# ── Payment analytics ────────────────────────────────────────

class StatusBreakdown(BaseModel):
    status: str
    count: int = 0
    total_amount: float = 0.0


class ReasonBreakdown(BaseModel):
    reason: str
    count: int = 0
    total_amount: float = 0.0


class VoidedSummary(BaseModel):
    count: int = 0
    total_amount: float = 0.0
    by_reason: list[ReasonBreakdown] = []


class AgingBucket(BaseModel):
    bucket: Literal["0-30", "31-60", "60+"]
    count: int = 0
    total_amount: float = 0.0


class PaymentAnalytics(BaseModel):
    report: Literal["payment_analytics"] = "payment_analytics"
    total_payments: int = 0
    status_breakdown: list[StatusBreakdown] = []
    voided: VoidedSummary = Field(default_factory=VoidedSummary)
    success_rate: float = 0.0       # Completed / total × 100
    payment_velocity: float = 0.0   # payments per day across the range
    aging: list[AgingBucket] = []   # Pending payments only


# ── Cashflow forecast ────────────────────────────────────────

class PendingObligation(BaseModel):
    type: str
    unpaid_kgs: float = 0.0
    price_per_kg: float = 0.0
    price_source: Literal["historical", "default"] = "default"
    amount: float = 0.0


class ForecastDay(BaseModel):
    day: int
    date: date
    expected_payout: float
    cumulative_payout: float


class CashflowForecast(BaseModel):
    report: Literal["cashflow_forecast"] = "cashflow_forecast"
    lookback_days: int = 0
    historical_total: float = 0.0
    historical_daily_average: float = 0.0
    pending_obligation: float = 0.0
    pending_by_type: list[PendingObligation] = []
    forecast: list[ForecastDay] = []


# ── Farmer performance ───────────────────────────────────────

class FarmerScorecard(BaseModel):
    farmer_id: str
    name: str
    weigh_station: str
    total_deliveries: int
    total_kgs: float
    avg_kgs_per_delivery: float
    first_delivery: datetime
    last_delivery: datetime
    total_paid: float
    payment_count: int
    avg_payment: float
    days_since_last_delivery: int
    reliability_score: float
    status: Literal["active", "inactive"]
    is_vip: bool


class FarmerPerformance(BaseModel):
    report: Literal["farmer_performance"] = "farmer_performance"
    sort_by: str = "value"
    farmers: list[FarmerScorecard] = []


# ── Comparative analytics ────────────────────────────────────

class PeriodTotals(BaseModel):
    label: str = ""
    start: datetime | None = None
    end: datetime | None = None
    kgs_delivered: float = 0.0
    delivery_count: int = 0
    payment_amount: float = 0.0
    payment_count: int = 0


class PeriodGrowth(BaseModel):
    """Growth % per metric; 0 when the previous period is 0."""
    kgs_delivered: float = 0.0
    delivery_count: float = 0.0
    payment_amount: float = 0.0
    payment_count: float = 0.0


class PeriodComparison(BaseModel):
    current: PeriodTotals = Field(default_factory=PeriodTotals)
    previous: PeriodTotals = Field(default_factory=PeriodTotals)
    growth: PeriodGrowth = Field(default_factory=PeriodGrowth)


class ComparativeAnalytics(BaseModel):
    report: Literal["comparative_analytics"] = "comparative_analytics"
    month_over_month: PeriodComparison = Field(default_factory=PeriodComparison)
    year_over_year: PeriodComparison = Field(default_factory=PeriodComparison)


# ── Delivery types ───────────────────────────────────────────

class TypeStats(BaseModel):
    type: str
    delivery_count: int = 0
    total_kgs: float = 0.0
    avg_kgs: float = 0.0
    payment_count: int = 0
    total_paid: float = 0.0
    avg_price_per_kg: float = 0.0


class TypeSeasonStats(BaseModel):
    type: str
    season: str
    delivery_count: int = 0
    total_kgs: float = 0.0


class DeliveryTypeAnalytics(BaseModel):
    report: Literal["delivery_type_analytics"] = "delivery_type_analytics"
    types: list[TypeStats] = []
    by_season: list[TypeSeasonStats] = []


# ── Regional profitability ───────────────────────────────────

class RegionStats(BaseModel):
    region: str
    total_paid: float = 0.0
    total_kgs: float = 0.0
    payment_count: int = 0
    avg_price_per_kg: float = 0.0
    farmer_count: int = 0
    recent_total_paid: float = 0.0     # trailing 30 days
    recent_payment_count: int = 0


class RegionalProfitability(BaseModel):
    report: Literal["regional_profitability"] = "regional_profitability"
    regions: list[RegionStats] = []


# ── Operational metrics ──────────────────────────────────────

class DriverThroughput(BaseModel):
    driver: str
    delivery_count: int = 0
    total_kgs: float = 0.0


class UsageCounts(BaseModel):
    """Activity over the trailing 30 days."""
    deliveries: int = 0
    payments: int = 0
    farmers_registered: int = 0
    active_farmers: int = 0


class OperationalMetrics(BaseModel):
    report: Literal["operational_metrics"] = "operational_metrics"
    avg_cycle_time_days: float = 0.0
    cycle_time_samples: int = 0
    avg_transaction_size: float = 0.0
    top_drivers: list[DriverThroughput] = []
    usage_30d: UsageCounts = Field(default_factory=UsageCounts)


# ── Composite ────────────────────────────────────────────────

class SectionError(BaseModel):
    section: str
    message: str


class FullReport(BaseModel):
    """Every report section; failed sections are defaulted and listed in errors."""
    report: Literal["full"] = "full"
    generated_at: datetime
    summary: SummaryReport = Field(default_factory=SummaryReport)
    payment_analytics: PaymentAnalytics = Field(default_factory=PaymentAnalytics)
    cashflow_forecast: CashflowForecast = Field(default_factory=CashflowForecast)
    farmer_performance: FarmerPerformance = Field(default_factory=FarmerPerformance)
    comparative_analytics: ComparativeAnalytics = Field(default_factory=ComparativeAnalytics)
    delivery_type_analytics: DeliveryTypeAnalytics = Field(default_factory=DeliveryTypeAnalytics)
    regional_profitability: RegionalProfitability = Field(default_factory=RegionalProfitability)
    operational_metrics: OperationalMetrics = Field(default_factory=OperationalMetrics)
    errors: list[SectionError] = []
