"""
Action Builder — Maps Recommendation → OptimizationAction.
Pure, no I/O. The executor only ever sees the output of this module.
"""

from autopilot.schemas import OptimizationAction, Recommendation

# recommendation action -> (action type, executable, requires_approval, default pct_change)
ACTION_TABLE: dict[str, tuple[str, bool, bool, float | None]] = {
    "pause": ("pause_campaign", True, True, None),
    "reduce_budget": ("reduce_budget", True, True, -0.30),
    "increase_budget": ("increase_budget", True, True, 0.20),
    # Raises the winner's budget; the loser is paused by its own pause action
    "shift_budget": ("shift_budget", True, True, 0.30),
    "refresh_creative": ("refresh_creative", False, False, None),
    "monitor": ("monitor", False, False, None),
}


def build_action(rec: Recommendation) -> OptimizationAction:
    action_type, executable, requires_approval, default_pct = ACTION_TABLE.get(
        rec.action, ACTION_TABLE["monitor"]
    )
    pct_change = rec.pct_change if rec.pct_change is not None else default_pct
    return OptimizationAction(
        type=action_type,
        campaign_id=rec.campaign_id,
        campaign_name=rec.campaign_name,
        reason=rec.reason,
        pct_change=pct_change,
        executable=executable,
        requires_approval=requires_approval,
    )


def build_actions(recommendations: list[Recommendation]) -> list[OptimizationAction]:
    return [build_action(r) for r in recommendations]
