"""PACER — Goal Progress Engine.

Derives each active goal's daily status from stored leads, persists one
ProgressTracking row per (adset_id, date) and hands the status to the
AlertEmitter. Status is never stored as state; it is re-derived daily.

    total_days      = end - start
    days_elapsed    = today - start
    daily_target    = volume / total_days
    ideal_progress  = days_elapsed / total_days * volume
    deviation_pct   = (leads - ideal) / ideal * 100      (0 when ideal == 0)

Classification precedence: COMPLETED, BEHIND (< -threshold),
AHEAD (> +threshold), ON_TRACK. Then, unless COMPLETED, AT_RISK overrides
when the daily pace still needed exceeds daily_target * risk_multiplier.
"""

import time
from collections import Counter
from datetime import date, datetime, time as time_of_day, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from pacer.config import Settings, settings
from pacer.core.logging import get_logger
from pacer.goals.alerts import AlertEmitter
from pacer.models.goal_models import (
    AdsetGoal,
    GoalEvaluation,
    GoalStatus,
    ProgressTracking,
)
from pacer.models.insight_models import InsightRecord, MetaLead
from pacer.models.sync_models import TrackingSummary

logger = get_logger("goals.engine")


class GoalPolicy(BaseModel):
    deviation_threshold: float = 10.0
    risk_multiplier: float = 1.5
    lead_source: str = "leads"  # leads | insights

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "GoalPolicy":
        return cls(
            deviation_threshold=s.deviation_threshold,
            risk_multiplier=s.risk_multiplier,
            lead_source=s.goal_lead_source,
        )


def classify(
    leads_captured: int,
    volume_contracted: int,
    deviation_pct: float,
    threshold: float,
) -> GoalStatus:
    if leads_captured >= volume_contracted:
        return GoalStatus.COMPLETED
    if deviation_pct < -threshold:
        return GoalStatus.BEHIND
    if deviation_pct > threshold:
        return GoalStatus.AHEAD
    return GoalStatus.ON_TRACK


def evaluate_goal(
    goal: AdsetGoal,
    today: date,
    leads_captured: int,
    policy: GoalPolicy | None = None,
) -> GoalEvaluation:
    """Pure evaluation of one goal on one day."""
    policy = policy or GoalPolicy()
    volume = goal.volume_contracted
    total_days = (goal.contract_end_date - goal.contract_start_date).days
    days_elapsed = (today - goal.contract_start_date).days
    days_remaining = max(0, (goal.contract_end_date - today).days)

    if total_days <= 0:
        logger.warning(
            f"Goal for ad set {goal.adset_id} has an empty contract window "
            f"({goal.contract_start_date} → {goal.contract_end_date})",
            extra={"adset_id": goal.adset_id},
        )
        status = (
            GoalStatus.COMPLETED if leads_captured >= volume else GoalStatus.ON_TRACK
        )
        return GoalEvaluation(
            adset_id=goal.adset_id,
            date=today,
            leads_captured=leads_captured,
            total_days=total_days,
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            daily_target=0.0,
            ideal_progress=0.0,
            deviation_pct=0.0,
            projected_daily=0.0,
            status=status,
        )

    daily_target = volume / total_days
    ideal_progress = days_elapsed * volume / total_days
    if ideal_progress > 0:
        deviation_pct = (leads_captured - ideal_progress) * 100 / ideal_progress
    else:
        deviation_pct = 0.0

    status = classify(leads_captured, volume, deviation_pct, policy.deviation_threshold)

    projected_daily = 0.0
    if days_remaining > 0:
        projected_daily = (volume - leads_captured) / days_remaining
    if (
        status != GoalStatus.COMPLETED
        and projected_daily > daily_target * policy.risk_multiplier
    ):
        status = GoalStatus.AT_RISK

    return GoalEvaluation(
        adset_id=goal.adset_id,
        date=today,
        leads_captured=leads_captured,
        total_days=total_days,
        days_elapsed=days_elapsed,
        days_remaining=days_remaining,
        daily_target=daily_target,
        ideal_progress=ideal_progress,
        deviation_pct=deviation_pct,
        projected_daily=projected_daily,
        status=status,
    )


class GoalProgressEngine:
    def __init__(
        self,
        session: Session,
        policy: GoalPolicy | None = None,
        alerts: AlertEmitter | None = None,
    ):
        self.session = session
        self.policy = policy or GoalPolicy()
        self.alerts = alerts or AlertEmitter(session)

    def active_goals(self, today: date) -> list[AdsetGoal]:
        return list(
            self.session.exec(
                select(AdsetGoal)
                .where(
                    AdsetGoal.contract_start_date <= today,
                    AdsetGoal.contract_end_date >= today,
                )
                .order_by(AdsetGoal.adset_id)
            ).all()
        )

    def leads_captured(self, adset_id: str, today: date) -> int:
        """Leads for the ad set up to the end of `today`."""
        if self.policy.lead_source == "insights":
            total = self.session.exec(
                select(func.coalesce(func.sum(InsightRecord.leads), 0)).where(
                    InsightRecord.level == "adset",
                    InsightRecord.entity_id == adset_id,
                    InsightRecord.date <= today,
                )
            ).one()
            return int(total)

        end_of_day = datetime.combine(
            today + timedelta(days=1), time_of_day.min, tzinfo=timezone.utc
        )
        count = self.session.exec(
            select(func.count(col(MetaLead.id))).where(
                MetaLead.adset_id == adset_id,
                MetaLead.created_time < end_of_day,
            )
        ).one()
        return int(count)

    def _save_tracking(self, evaluation: GoalEvaluation) -> ProgressTracking:
        """Insert or overwrite the (adset_id, date) tracking row."""
        row = self.session.exec(
            select(ProgressTracking).where(
                ProgressTracking.adset_id == evaluation.adset_id,
                ProgressTracking.date == evaluation.date,
            )
        ).first()
        if row is None:
            row = ProgressTracking(adset_id=evaluation.adset_id, date=evaluation.date)
        row.leads_captured = evaluation.leads_captured
        row.daily_target = round(evaluation.daily_target, 4)
        row.status = evaluation.status.value
        row.deviation_pct = round(evaluation.deviation_pct, 2)
        self.session.add(row)
        return row

    def evaluate(self, goal: AdsetGoal, today: date) -> tuple[GoalEvaluation, bool]:
        """Evaluate, persist and alert for one goal. Commits on success."""
        leads = self.leads_captured(goal.adset_id, today)
        evaluation = evaluate_goal(goal, today, leads, self.policy)
        self._save_tracking(evaluation)
        alert = self.alerts.maybe_emit(
            goal.adset_id, today, evaluation.status, evaluation.deviation_pct
        )
        self.session.commit()
        return evaluation, alert is not None

    def run(self, today: Optional[date] = None) -> TrackingSummary:
        """Evaluate every active goal. A failing goal is logged and counted."""
        today = today or datetime.now(timezone.utc).date()
        started = time.monotonic()
        goals = self.active_goals(today)
        summary = TrackingSummary(date=today.isoformat())
        statuses: Counter = Counter()

        logger.info(f"🎯 Tracking {len(goals)} active goals for {today}")

        for goal in goals:
            try:
                evaluation, alerted = self.evaluate(goal, today)
            except SQLAlchemyError as e:
                self.session.rollback()
                summary.goals_failed += 1
                logger.error(
                    f"❌ Failed to evaluate goal for ad set {goal.adset_id}: {e}",
                    extra={"adset_id": goal.adset_id},
                )
                continue
            summary.goals_evaluated += 1
            summary.alerts_emitted += int(alerted)
            statuses[evaluation.status.value] += 1
            logger.info(
                f"Ad set {goal.adset_id}: {evaluation.leads_captured}/"
                f"{goal.volume_contracted} leads, {evaluation.deviation_pct:+.1f}% "
                f"→ {evaluation.status.value}",
                extra={"adset_id": goal.adset_id},
            )

        summary.status_counts = dict(statuses)
        logger.info(
            f"✅ Goal tracking done: {summary.goals_evaluated} evaluated, "
            f"{summary.goals_failed} failed, {summary.alerts_emitted} alerts",
            extra={"duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return summary
