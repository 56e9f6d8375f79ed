"""PACER — Alert Emitter.

Raises an alert only when a goal's status changes, so a goal that stays
behind for a week produces one alert, not seven. ON_TRACK never alerts.
"""

from datetime import date
from typing import Optional

from sqlmodel import Session, col, select

from pacer.core.logging import get_logger
from pacer.models.goal_models import AlertSeverity, GoalStatus, ProgressAlert

logger = get_logger("goals.alerts")

SEVERITY_BY_STATUS = {
    GoalStatus.BEHIND: AlertSeverity.WARNING,
    GoalStatus.AT_RISK: AlertSeverity.CRITICAL,
    GoalStatus.AHEAD: AlertSeverity.INFO,
    GoalStatus.COMPLETED: AlertSeverity.INFO,
}

MESSAGE_TEMPLATES = {
    GoalStatus.BEHIND: "Ad set is {deviation:.1f}% behind the expected lead volume.",
    GoalStatus.AT_RISK: (
        "Ad set is at risk of missing its contracted volume "
        "({deviation:.1f}% deviation from the ideal pace)."
    ),
    GoalStatus.AHEAD: "Ad set is {deviation:.1f}% ahead of the expected lead volume.",
    GoalStatus.COMPLETED: "Contracted goal reached!",
}


def build_message(status: GoalStatus, deviation_pct: float) -> str:
    return MESSAGE_TEMPLATES[status].format(deviation=abs(deviation_pct))


class AlertEmitter:
    def __init__(self, session: Session):
        self.session = session

    def last_alert(self, adset_id: str) -> Optional[ProgressAlert]:
        return self.session.exec(
            select(ProgressAlert)
            .where(ProgressAlert.adset_id == adset_id)
            .order_by(col(ProgressAlert.date).desc(), col(ProgressAlert.id).desc())
        ).first()

    def maybe_emit(
        self,
        adset_id: str,
        day: date,
        status: GoalStatus,
        deviation_pct: float,
    ) -> Optional[ProgressAlert]:
        """Append an alert if `status` differs from the last alerted one.

        The caller owns the transaction; the alert is added, not committed.
        """
        status = GoalStatus(status)
        if status == GoalStatus.ON_TRACK:
            return None

        previous = self.last_alert(adset_id)
        if previous is not None and previous.type == status.value:
            return None

        alert = ProgressAlert(
            adset_id=adset_id,
            date=day,
            type=status.value,
            severity=SEVERITY_BY_STATUS[status].value,
            message=build_message(status, deviation_pct),
        )
        self.session.add(alert)
        logger.info(
            f"🚨 {alert.severity.upper()} alert for ad set {adset_id}: {alert.message}",
            extra={"adset_id": adset_id},
        )
        return alert
