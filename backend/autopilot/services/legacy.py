"""
Legacy run outputs — read-side migration for automation_runs.output.

Runs written before the versioned RunOutput format stored a flat dict:
  monitor runs:   {"metrics": [...], "anomalies": [...], "totals": {...}}
  optimizer runs: {"recommendations": [...], "actions": [...]?}
  executed runs:  {..., "executed_actions": [...], "execution_results": [...]}
and the oldest optimizer runs had recommendations only, no actions.
parse_run_output() is the one place that knows about those shapes.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from autopilot.schemas import (
    AnomalyReport,
    ExecutionReport,
    ExecutionResult,
    MetricsSnapshot,
    Anomaly,
    MonitorTotals,
    OptimizationAction,
    RecommendationSet,
    Recommendation,
    RunOutput,
)
from autopilot.services.action_builder import ACTION_TABLE

logger = logging.getLogger(__name__)


def map_legacy_recommendations(recommendations: list[dict]) -> list[OptimizationAction]:
    """
    Map untyped recommendation dicts to actions. Unlike build_action, unknown
    action names are kept (non-executable) so the executor reports them as
    unsupported instead of silently dropping them.
    """
    actions = []
    for r in recommendations:
        name = r.get("action") or "monitor"
        action_type, executable, requires_approval, default_pct = ACTION_TABLE.get(
            name, (name, False, False, None)
        )
        pct_change = r.get("pct_change")
        actions.append(OptimizationAction(
            type=action_type,
            campaign_id=str(r.get("campaign_id") or ""),
            campaign_name=r.get("campaign_name") or "",
            reason=r.get("reason") or "",
            pct_change=pct_change if pct_change is not None else default_pct,
            executable=executable,
            requires_approval=requires_approval,
        ))
    return actions


def parse_run_output(raw: Optional[dict]) -> RunOutput:
    """Read a stored output in either the current or a legacy shape."""
    if not raw:
        return RunOutput()
    if "reports" in raw and "version" in raw:
        return RunOutput.model_validate(raw)

    logger.debug(f"Reading legacy run output with keys: {sorted(raw.keys())}")
    output = RunOutput()

    if "metrics" in raw or "anomalies" in raw:
        output = output.with_report(AnomalyReport(
            metrics=_parse_list(MetricsSnapshot, raw.get("metrics")),
            anomalies=_parse_list(Anomaly, raw.get("anomalies")),
            totals=_parse_totals(raw.get("totals")),
            message=raw.get("message"),
            checked_at=raw.get("checked_at"),
        ))

    recommendations = raw.get("recommendations") or []
    actions = raw.get("actions") or []
    if recommendations or actions:
        if actions:
            parsed_actions = _parse_list(OptimizationAction, actions)
        else:
            parsed_actions = map_legacy_recommendations(recommendations)
        output = output.with_report(RecommendationSet(
            recommendations=_parse_list(Recommendation, recommendations),
            actions=parsed_actions,
            anomalies_analyzed=raw.get("anomalies_analyzed") or 0,
            campaigns_analyzed=raw.get("campaigns_analyzed") or 0,
            generated_at=raw.get("generated_at"),
        ))

    if "execution_results" in raw:
        output = output.with_report(ExecutionReport(
            actions=_parse_list(OptimizationAction, raw.get("executed_actions")),
            results=_parse_list(ExecutionResult, raw.get("execution_results")),
            summary=raw.get("execution_summary") or "",
            note=raw.get("execution_note"),
            executed_at=raw.get("executed_at"),
            executed_by=raw.get("executed_by"),
        ))

    return output


def _parse_list(model, items) -> list:
    parsed = []
    for item in items or []:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed legacy {model.__name__}: {e.error_count()} errors")
    return parsed


def _parse_totals(raw: Optional[dict]) -> MonitorTotals:
    if not raw:
        return MonitorTotals()
    return MonitorTotals(
        campaigns=raw.get("campaigns") or 0,
        total_spend=raw.get("total_spend") or 0.0,
        total_conversions=raw.get("total_conversions") or 0,
        avg_cpa=raw.get("avg_cpa") or 0.0,
    )
