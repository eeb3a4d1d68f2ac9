"""
Anomaly Service — Compares two consecutive metric snapshots per campaign.

Rules (each evaluated independently; one campaign can trip several):
- CPA spike:  CPA up more than 50% (critical above 100%)
- CTR drop:   CTR down more than 30% (critical below -50%)
- Overspend:  spend above 120% of daily budget (critical above 150%)

No previous snapshot set means no anomalies: one full cycle of history is
needed before anything can be compared.
"""

import logging
from typing import Iterable

from autopilot.schemas import Anomaly, MetricsSnapshot

logger = logging.getLogger(__name__)

CPA_SPIKE_PCT = 50.0
CPA_SPIKE_CRITICAL_PCT = 100.0
CTR_DROP_PCT = -30.0
CTR_DROP_CRITICAL_PCT = -50.0
OVERSPEND_PCT = 120.0
OVERSPEND_CRITICAL_PCT = 150.0


def detect_anomalies(
    current: Iterable[MetricsSnapshot],
    previous: Iterable[MetricsSnapshot],
) -> list[Anomaly]:
    """Return anomalies sorted critical-first, then by largest absolute change."""
    prev_map = {p.campaign_id: p for p in previous}
    if not prev_map:
        return []

    anomalies: list[Anomaly] = []
    for curr in current:
        prev = prev_map.get(curr.campaign_id)
        if prev is None:
            continue
        anomalies.extend(_check_campaign(curr, prev))

    anomalies.sort(key=lambda a: (a.severity != "critical", -abs(a.change_pct)))

    if anomalies:
        logger.info(
            f"Detected {len(anomalies)} anomalies "
            f"({sum(1 for a in anomalies if a.severity == 'critical')} critical)"
        )
    return anomalies


def _check_campaign(curr: MetricsSnapshot, prev: MetricsSnapshot) -> list[Anomaly]:
    found = []

    if prev.cpa > 0 and curr.cpa > 0:
        cpa_change = (curr.cpa - prev.cpa) / prev.cpa * 100
        if cpa_change > CPA_SPIKE_PCT:
            found.append(Anomaly(
                type="cpa_spike",
                campaign_id=curr.campaign_id,
                campaign_name=curr.campaign_name,
                metric="cost per lead",
                current_value=curr.cpa,
                previous_value=prev.cpa,
                change_pct=cpa_change,
                severity="critical" if cpa_change > CPA_SPIKE_CRITICAL_PCT else "warning",
                description=f"CPA spiked {cpa_change:.0f}% from ${prev.cpa:.2f} to ${curr.cpa:.2f}",
            ))

    if prev.ctr > 0 and curr.ctr > 0:
        ctr_change = (curr.ctr - prev.ctr) / prev.ctr * 100
        if ctr_change < CTR_DROP_PCT:
            found.append(Anomaly(
                type="ctr_drop",
                campaign_id=curr.campaign_id,
                campaign_name=curr.campaign_name,
                metric="click-through rate",
                current_value=curr.ctr,
                previous_value=prev.ctr,
                change_pct=ctr_change,
                severity="critical" if ctr_change < CTR_DROP_CRITICAL_PCT else "warning",
                description=f"CTR dropped {abs(ctr_change):.0f}% from {prev.ctr:.2f}% to {curr.ctr:.2f}%",
            ))

    if curr.daily_budget > 0:
        spend_pct = curr.spend_today / curr.daily_budget * 100
        if spend_pct > OVERSPEND_PCT:
            found.append(Anomaly(
                type="overspend",
                campaign_id=curr.campaign_id,
                campaign_name=curr.campaign_name,
                metric="spend pacing",
                current_value=curr.spend_today,
                previous_value=curr.daily_budget,
                change_pct=spend_pct - 100,
                severity="critical" if spend_pct > OVERSPEND_CRITICAL_PCT else "warning",
                description=(
                    f"Spending at {spend_pct:.0f}% of daily budget "
                    f"(${curr.spend_today:.2f} / ${curr.daily_budget:.2f})"
                ),
            ))

    return found


def summarize_anomalies(anomalies: list[Anomaly], metrics: list[MetricsSnapshot], total_spend: float,
                        total_conversions: int, avg_cpa: float) -> tuple[str, str]:
    """(operator summary, first-person summary) for a monitor run."""
    if anomalies:
        critical = sum(1 for a in anomalies if a.severity == "critical")
        summary = f"{len(anomalies)} anomalies detected across {len(metrics)} campaigns. {critical} critical."
        top = anomalies[0]
        verb = "jumped" if top.type == "cpa_spike" else "dropped"
        if top.type == "overspend":
            verb, where = "is running", "over budget"
        else:
            where = "in the last check"
        first_person = (
            f"I noticed your {top.metric} {verb} {abs(top.change_pct):.0f}% {where}. "
            f"I'm preparing recommendations."
        )
        return summary, first_person

    summary = (
        f"All {len(metrics)} campaigns running normally. "
        f"${total_spend:.2f} spent, {total_conversions} conversions."
    )
    first_person = (
        f"Your campaigns are running smoothly. ${total_spend:.0f} spent today, "
        f"{total_conversions} lead{'' if total_conversions == 1 else 's'} at ${avg_cpa:.2f} each."
    )
    return summary, first_person
