"""
Recommendation Service — Turns anomalies into prioritized, human-readable suggestions.

Deterministic rule set, no model involved:
- CPA spike (critical, or > 100%): pause the campaign, and shift budget to the
  best campaign (lowest CPA with conversions) when there is a different one
- CPA spike (warning): cut budget 30%
- CTR drop: refresh creatives (creative fatigue)
- Overspend: cut budget 20%
- Spend with clicks but no conversions and no other recommendation: monitor

Output is stable-sorted by priority (high, medium, low); ties keep the order
the rules produced them in.
"""

import logging
from typing import Optional

from autopilot.schemas import Anomaly, MetricsSnapshot, Recommendation

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

WARNING_CPA_BUDGET_CUT = -0.30
OVERSPEND_BUDGET_CUT = -0.20
SHIFT_BUDGET_INCREASE = 0.30
PAUSE_SAVINGS_SHARE = 0.5

# Zero-conversion watch list thresholds
MONITOR_MIN_SPEND = 10.0
MONITOR_MIN_CLICKS = 5


def find_best_campaign(metrics: list[MetricsSnapshot]) -> Optional[MetricsSnapshot]:
    """Lowest CPA among campaigns with at least one conversion (first one wins ties)."""
    converting = [m for m in metrics if m.conversions > 0]
    if not converting:
        return None
    return min(converting, key=lambda m: m.cpa)


def generate_recommendations(
    anomalies: list[Anomaly],
    metrics: list[MetricsSnapshot],
) -> list[Recommendation]:
    metrics_map = {m.campaign_id: m for m in metrics}
    best = find_best_campaign(metrics)
    recommendations: list[Recommendation] = []

    for anomaly in anomalies:
        campaign = metrics_map.get(anomaly.campaign_id)
        daily_budget = campaign.daily_budget if campaign else 0.0

        if anomaly.type == "cpa_spike":
            if anomaly.severity == "critical" or anomaly.change_pct > 100:
                recommendations.append(_pause(anomaly, daily_budget))
                if best is not None and best.campaign_id != anomaly.campaign_id:
                    recommendations.append(_shift_budget(anomaly, best, daily_budget))
            else:
                recommendations.append(Recommendation(
                    action="reduce_budget",
                    campaign_id=anomaly.campaign_id,
                    campaign_name=anomaly.campaign_name,
                    reason=f"CPA increased {anomaly.change_pct:.0f}%",
                    details=(
                        "Reduce daily budget by 30% and monitor for 24 hours. "
                        "If CPA does not improve, consider pausing."
                    ),
                    priority="medium",
                    estimated_impact="Limit exposure while testing if performance recovers",
                    pct_change=WARNING_CPA_BUDGET_CUT,
                ))

        elif anomaly.type == "ctr_drop":
            recommendations.append(Recommendation(
                action="refresh_creative",
                campaign_id=anomaly.campaign_id,
                campaign_name=anomaly.campaign_name,
                reason=f"CTR dropped {abs(anomaly.change_pct):.0f}%",
                details=(
                    f"Click-through rate fell from {anomaly.previous_value:.2f}% to "
                    f"{anomaly.current_value:.2f}%. This usually signals creative fatigue. "
                    f"Swap in fresh ad creatives."
                ),
                priority="high" if anomaly.severity == "critical" else "medium",
                estimated_impact="Fresh creatives typically recover CTR within 3-5 days",
            ))

        elif anomaly.type == "overspend":
            recommendations.append(Recommendation(
                action="reduce_budget",
                campaign_id=anomaly.campaign_id,
                campaign_name=anomaly.campaign_name,
                reason=f"Spending {anomaly.change_pct:.0f}% over daily budget",
                details=(
                    f"Campaign spent ${anomaly.current_value:.2f} against a "
                    f"${anomaly.previous_value:.2f} budget. Check if accelerated delivery "
                    f"is enabled and consider switching to standard delivery."
                ),
                priority="high" if anomaly.severity == "critical" else "medium",
                estimated_impact=(
                    f"Prevent budget overrun of ~${anomaly.current_value - anomaly.previous_value:.2f}/day"
                ),
                pct_change=OVERSPEND_BUDGET_CUT,
            ))

    recommended = {r.campaign_id for r in recommendations}
    for m in metrics:
        if m.campaign_id in recommended:
            continue
        if m.spend_today > MONITOR_MIN_SPEND and m.conversions == 0 and m.clicks > MONITOR_MIN_CLICKS:
            recommendations.append(Recommendation(
                action="monitor",
                campaign_id=m.campaign_id,
                campaign_name=m.campaign_name,
                reason=f"${m.spend_today:.2f} spent with 0 conversions",
                details=(
                    f"Getting clicks ({m.clicks}) but no conversions. Landing page or targeting "
                    f"may need adjustment. Monitor for another cycle before pausing."
                ),
                priority="low",
                estimated_impact="Early detection prevents wasted spend",
            ))
            recommended.add(m.campaign_id)

    return sort_by_priority(recommendations)


def sort_by_priority(recommendations: list[Recommendation]) -> list[Recommendation]:
    return sorted(recommendations, key=lambda r: PRIORITY_ORDER[r.priority])


def _pause(anomaly: Anomaly, daily_budget: float) -> Recommendation:
    return Recommendation(
        action="pause",
        campaign_id=anomaly.campaign_id,
        campaign_name=anomaly.campaign_name,
        reason=f"CPA spiked {anomaly.change_pct:.0f}%",
        details=(
            f"Cost per lead went from ${anomaly.previous_value:.2f} to ${anomaly.current_value:.2f}. "
            f"Pausing prevents further waste while we investigate."
        ),
        priority="high",
        estimated_impact=f"Save ~${daily_budget * PAUSE_SAVINGS_SHARE:.2f}/day in wasted spend",
    )


def _shift_budget(anomaly: Anomaly, best: MetricsSnapshot, daily_budget: float) -> Recommendation:
    cpa_gap = (1 - best.cpa / anomaly.current_value) * 100 if anomaly.current_value > 0 else 0.0
    extra_leads = round(daily_budget / best.cpa) if best.cpa > 0 else 0
    return Recommendation(
        action="shift_budget",
        campaign_id=best.campaign_id,
        campaign_name=best.campaign_name,
        reason=f"This campaign has {cpa_gap:.0f}% lower CPA",
        details=(
            f"Shift budget from {anomaly.campaign_name} to {best.campaign_name} "
            f"(${best.cpa:.2f} CPA vs ${anomaly.current_value:.2f})."
        ),
        priority="high",
        estimated_impact=f"Could generate {extra_leads} extra leads/day at current CPA",
        pct_change=SHIFT_BUDGET_INCREASE,
    )


def summarize_recommendations(recommendations: list[Recommendation]) -> tuple[str, str]:
    """(operator summary, first-person summary) for an optimizer run."""
    high = [r for r in recommendations if r.priority == "high"]
    count = len(recommendations)
    plural = "" if count == 1 else "s"
    summary = f"{count} optimization recommendations generated. {len(high)} high priority."

    if high:
        top = high[0]
        if top.action == "pause":
            shift = next((r for r in recommendations if r.action in ("increase_budget", "shift_budget")), None)
            if shift is not None:
                first_person = (
                    f"I have a recommendation: pause {top.campaign_name} ({top.reason}) and shift "
                    f"that budget to {shift.campaign_name} which is performing better."
                )
            else:
                first_person = (
                    f"Your {top.campaign_name} needs attention. I recommend pausing it and "
                    f"refreshing the creatives. {top.reason}."
                )
        elif top.action == "reduce_budget":
            first_person = (
                f"I recommend reducing budget on {top.campaign_name}. {top.reason}. "
                f"This should save you money while we figure out what changed."
            )
        else:
            first_person = (
                f"I have {count} optimization suggestion{plural} for your campaigns. "
                f"The most urgent: {top.details}"
            )
    elif recommendations:
        first_person = (
            f"I reviewed your campaign performance and have {count} suggestion{plural} to improve "
            f"results. Nothing urgent, but small tweaks that could help."
        )
    else:
        first_person = (
            "I reviewed your campaigns and everything looks good. No changes needed right now. "
            "I will keep monitoring."
        )
    return summary, first_person
