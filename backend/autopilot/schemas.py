"""
Domain values passed between pipeline stages and stored in AutomationRun.output.

Everything here is immutable once built. The run output is a versioned list of
tagged reports so readers never guess which keys a run happens to carry.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

AnomalyType = Literal["cpa_spike", "ctr_drop", "overspend"]
Severity = Literal["warning", "critical"]
RecommendationKind = Literal[
    "pause", "reduce_budget", "increase_budget", "shift_budget", "refresh_creative", "monitor",
]
Priority = Literal["high", "medium", "low"]
ActionType = Literal[
    "pause_campaign", "reduce_budget", "increase_budget", "shift_budget", "refresh_creative", "monitor",
]
ExecutionStatus = Literal[
    "paused", "budget_updated", "not_found", "not_launched", "not_supported",
    "skipped", "meta_error", "unsupported", "no_credentials", "error",
]
LocalWrite = Literal["synced", "failed", "not_applicable"]

OUTPUT_VERSION = 1


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Pipeline values ───────────────────────────────────────────────────

class MetricsSnapshot(_Frozen):
    """One campaign, one observation cycle. Ratios are 0 when the denominator is 0."""
    campaign_id: str
    campaign_name: str
    status: Optional[str] = None
    daily_budget: float = 0.0
    spend_today: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    cpa: float = 0.0
    ctr: float = 0.0  # percent
    cpc: float = 0.0

    @classmethod
    def from_counts(
        cls,
        campaign_id: str,
        campaign_name: str,
        status: Optional[str],
        daily_budget: float,
        spend_today: float,
        impressions: int,
        clicks: int,
        conversions: int,
    ) -> "MetricsSnapshot":
        return cls(
            campaign_id=campaign_id,
            campaign_name=campaign_name,
            status=status,
            daily_budget=daily_budget,
            spend_today=spend_today,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            cpa=spend_today / conversions if conversions > 0 else 0.0,
            ctr=clicks / impressions * 100 if impressions > 0 else 0.0,
            cpc=spend_today / clicks if clicks > 0 else 0.0,
        )


class Anomaly(_Frozen):
    type: AnomalyType
    campaign_id: str
    campaign_name: str
    metric: str
    current_value: float
    previous_value: float
    change_pct: float
    severity: Severity
    description: str


class Recommendation(_Frozen):
    action: RecommendationKind
    campaign_id: str
    campaign_name: str
    reason: str
    details: str
    priority: Priority
    estimated_impact: str
    pct_change: Optional[float] = None  # fraction, -0.30 = reduce 30%


class OptimizationAction(_Frozen):
    """The only shape the executor consumes."""
    type: str  # ActionType, or a legacy name that is never executable
    campaign_id: str
    campaign_name: str
    reason: str = ""
    pct_change: Optional[float] = None
    executable: bool
    requires_approval: bool


class ExecutionResult(_Frozen):
    action_type: str
    campaign_id: str
    campaign_name: str
    ok: bool
    status: ExecutionStatus
    error: Optional[str] = None
    detail: Optional[dict] = None
    # Outcome of the local write-back after a successful platform call.
    # "failed" means the platform changed but our campaigns row did not.
    local_write: LocalWrite = "not_applicable"


# ── Run output reports ────────────────────────────────────────────────

class MonitorTotals(_Frozen):
    campaigns: int = 0
    total_spend: float = 0.0
    total_conversions: int = 0
    avg_cpa: float = 0.0


class AnomalyReport(_Frozen):
    kind: Literal["anomaly_report"] = "anomaly_report"
    metrics: list[MetricsSnapshot] = Field(default_factory=list)
    anomalies: list[Anomaly] = Field(default_factory=list)
    totals: MonitorTotals = Field(default_factory=MonitorTotals)
    message: Optional[str] = None
    checked_at: Optional[datetime] = None


class RecommendationSet(_Frozen):
    kind: Literal["recommendation_set"] = "recommendation_set"
    recommendations: list[Recommendation] = Field(default_factory=list)
    actions: list[OptimizationAction] = Field(default_factory=list)
    anomalies_analyzed: int = 0
    campaigns_analyzed: int = 0
    generated_at: Optional[datetime] = None


class ExecutionReport(_Frozen):
    kind: Literal["execution_report"] = "execution_report"
    actions: list[OptimizationAction] = Field(default_factory=list)
    results: list[ExecutionResult] = Field(default_factory=list)
    summary: str = ""
    note: Optional[str] = None
    executed_at: Optional[datetime] = None
    executed_by: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


Report = Annotated[
    Union[AnomalyReport, RecommendationSet, ExecutionReport],
    Field(discriminator="kind"),
]


class RunOutput(_Frozen):
    version: int = OUTPUT_VERSION
    reports: list[Report] = Field(default_factory=list)

    def find(self, report_type):
        """Latest report of the given class, or None."""
        for report in reversed(self.reports):
            if isinstance(report, report_type):
                return report
        return None

    def with_report(self, report) -> "RunOutput":
        return RunOutput(version=self.version, reports=[*self.reports, report])

    def to_json(self) -> dict:
        return self.model_dump(mode="json")
