"""
Lead intelligence alerts.

Evaluates threshold rules against LeadIntelligence rows and raises
deduplicated, prioritized notifications.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from leadflow.core.config import settings
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import AlertRuleType, DecisionTimeframe, NotificationPriority
from leadflow.db.models import LeadInsight, LeadIntelligence, Notification
from leadflow.services import notification_service
from leadflow.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class AlertServiceError(Exception):
    """Base class for alert evaluation failures."""


class LeadIntelligenceNotFoundError(AlertServiceError):
    pass


class UnknownAlertTypeError(AlertServiceError):
    pass


# =============================================================================
# Rules
# =============================================================================

@dataclass(frozen=True)
class AlertRule:
    type: AlertRuleType
    priority: NotificationPriority
    default_threshold: float | None


RULES: dict[AlertRuleType, AlertRule] = {
    AlertRuleType.HIGH_SCORE: AlertRule(AlertRuleType.HIGH_SCORE, NotificationPriority.HIGH, 80),
    AlertRuleType.HIGH_CONVERSION: AlertRule(AlertRuleType.HIGH_CONVERSION, NotificationPriority.HIGH, 0.8),
    AlertRuleType.URGENT_LEAD: AlertRule(AlertRuleType.URGENT_LEAD, NotificationPriority.HIGH, 80),
    AlertRuleType.ENGAGEMENT_SPIKE: AlertRule(AlertRuleType.ENGAGEMENT_SPIKE, NotificationPriority.MEDIUM, 85),
    AlertRuleType.ACTION_REQUIRED: AlertRule(AlertRuleType.ACTION_REQUIRED, NotificationPriority.HIGH, 1),
    AlertRuleType.SCORE_INCREASE: AlertRule(AlertRuleType.SCORE_INCREASE, NotificationPriority.MEDIUM, 70),
    AlertRuleType.COMPETITOR_MENTION: AlertRule(AlertRuleType.COMPETITOR_MENTION, NotificationPriority.MEDIUM, None),
    AlertRuleType.PRICE_SENSITIVITY: AlertRule(AlertRuleType.PRICE_SENSITIVITY, NotificationPriority.MEDIUM, None),
    AlertRuleType.DECISION_TIMEFRAME: AlertRule(AlertRuleType.DECISION_TIMEFRAME, NotificationPriority.HIGH, None),
    AlertRuleType.CUSTOM: AlertRule(AlertRuleType.CUSTOM, NotificationPriority.MEDIUM, None),
}

# Batch sweeps use stricter thresholds than on-demand checks.
BATCH_THRESHOLDS: dict[AlertRuleType, float] = {
    AlertRuleType.HIGH_SCORE: 85,
    AlertRuleType.HIGH_CONVERSION: 0.85,
    AlertRuleType.URGENT_LEAD: 80,
    AlertRuleType.ENGAGEMENT_SPIKE: 85,
    AlertRuleType.ACTION_REQUIRED: 1,
}

_URGENT_TIMEFRAMES = {DecisionTimeframe.IMMEDIATE.value, DecisionTimeframe.SHORT_TERM.value}


def resolve_rule_type(value: str) -> AlertRuleType:
    try:
        return AlertRuleType(value)
    except ValueError:
        raise UnknownAlertTypeError(f"Unknown alert type: {value}")


# =============================================================================
# Record fields + custom conditions
# =============================================================================

_FIELD_ALIASES = {
    "overall_score": "overallScore",
    "conversion_probability": "conversionProbability",
    "urgency_score": "urgencyScore",
    "engagement_score": "engagementScore",
    "competitor_mentions": "competitorMentions",
    "price_signals": "priceSignals",
    "decision_timeframe": "decisionTimeframe",
    "lead_name": "leadName",
    "action_required_count": "actionRequiredCount",
}


def count_action_required(db: Session, intelligence: LeadIntelligence) -> int:
    return (
        db.query(LeadInsight)
        .filter(
            LeadInsight.lead_intelligence_id == intelligence.id,
            LeadInsight.action_required.is_(True),
            LeadInsight.is_read.is_(False),
        )
        .count()
    )


def record_fields(intelligence: LeadIntelligence, *, action_required_count: int | None = None) -> dict[str, Any]:
    """Fields addressable by custom conditions (camelCase)."""
    fields: dict[str, Any] = {
        "overallScore": intelligence.overall_score,
        "conversionProbability": intelligence.conversion_probability,
        "urgencyScore": intelligence.urgency_score,
        "engagementScore": intelligence.engagement_score,
        "competitorMentions": intelligence.competitor_mentions or [],
        "priceSignals": intelligence.price_signals or {},
        "decisionTimeframe": intelligence.decision_timeframe,
        "leadName": intelligence.lead_name,
    }
    if action_required_count is not None:
        fields["actionRequiredCount"] = action_required_count
    return fields


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "contains":
        if isinstance(actual, (str, list, tuple, set, dict)):
            return expected in actual
        return False
    if operator == "eq":
        return actual == expected
    if actual is None or expected is None:
        return False
    try:
        if operator == "gte":
            return actual >= expected
        if operator == "lte":
            return actual <= expected
        if operator == "gt":
            return actual > expected
        if operator == "lt":
            return actual < expected
    except TypeError:
        return False
    return False


def evaluate_conditions(fields: dict[str, Any], conditions: Iterable[dict]) -> bool:
    """All-of over ``{field, operator, value}`` conditions; empty means no match."""
    conditions = list(conditions)
    if not conditions:
        return False
    for condition in conditions:
        name = str(condition.get("field") or "")
        name = _FIELD_ALIASES.get(name, name)
        if not _compare(str(condition.get("operator") or ""), fields.get(name), condition.get("value")):
            return False
    return True


@dataclass
class AlertEvaluation:
    rule: AlertRule
    triggered: bool
    threshold: float | None = None
    detail: str = ""


def evaluate_rule(
    db: Session,
    intelligence: LeadIntelligence,
    rule_type: AlertRuleType,
    *,
    threshold: float | None = None,
    conditions: list[dict] | None = None,
) -> AlertEvaluation:
    """Check one rule against one record. No side effects."""
    rule = RULES[rule_type]
    limit = rule.default_threshold if threshold is None else threshold

    if rule_type == AlertRuleType.HIGH_SCORE:
        return AlertEvaluation(rule, intelligence.overall_score >= limit, limit, f"High-scoring lead detected. Score: {intelligence.overall_score}/100")
    if rule_type == AlertRuleType.HIGH_CONVERSION:
        pct = round(intelligence.conversion_probability * 100)
        return AlertEvaluation(rule, intelligence.conversion_probability >= limit, limit, f"High conversion probability: {pct}%")
    if rule_type == AlertRuleType.URGENT_LEAD:
        return AlertEvaluation(rule, intelligence.urgency_score >= limit, limit, f"Urgent lead requires immediate attention. Urgency score: {intelligence.urgency_score}/100")
    if rule_type == AlertRuleType.ENGAGEMENT_SPIKE:
        return AlertEvaluation(rule, intelligence.engagement_score >= limit, limit, f"Engagement spike detected. Score: {intelligence.engagement_score}/100")
    if rule_type == AlertRuleType.SCORE_INCREASE:
        return AlertEvaluation(rule, intelligence.overall_score >= limit, limit, f"Lead score increased to {intelligence.overall_score}/100")
    if rule_type == AlertRuleType.ACTION_REQUIRED:
        count = count_action_required(db, intelligence)
        return AlertEvaluation(rule, count >= limit, limit, f"{count} lead insight(s) require your attention")
    if rule_type == AlertRuleType.COMPETITOR_MENTION:
        mentions = intelligence.competitor_mentions or []
        return AlertEvaluation(rule, len(mentions) > 0, None, "Competitor mentions detected in lead communications")
    if rule_type == AlertRuleType.PRICE_SENSITIVITY:
        concerns = (intelligence.price_signals or {}).get("budgetConcerns")
        return AlertEvaluation(rule, bool(concerns), None, "Price sensitivity indicators detected")
    if rule_type == AlertRuleType.DECISION_TIMEFRAME:
        timeframe = intelligence.decision_timeframe or ""
        return AlertEvaluation(
            rule,
            timeframe in _URGENT_TIMEFRAMES,
            None,
            f"Lead shows {timeframe.replace('_', ' ')} decision timeline",
        )

    # CUSTOM
    fields = record_fields(intelligence, action_required_count=count_action_required(db, intelligence))
    return AlertEvaluation(rule, evaluate_conditions(fields, conditions or []), None, "Custom alert conditions met")


# =============================================================================
# Notifications
# =============================================================================

def build_alert_message(intelligence: LeadIntelligence, evaluation: AlertEvaluation) -> str:
    pct = round(intelligence.conversion_probability * 100)
    return (
        f"{evaluation.detail}\n\n"
        f"Lead: {intelligence.display_name} ({intelligence.lead_key})\n"
        f"Overall Score: {intelligence.overall_score}/100\n"
        f"Conversion Probability: {pct}%"
    )


def create_alert_notification(
    db: Session,
    intelligence: LeadIntelligence,
    evaluation: AlertEvaluation,
) -> Notification | None:
    """Create the notification unless one exists for this lead inside the window."""
    rule_type = evaluation.rule.type
    return notification_service.create_notification(
        db,
        org_id=intelligence.org_id,
        type=rule_type.notification_type,
        title=f"Smart Intelligence Alert: {intelligence.display_name}",
        message=build_alert_message(intelligence, evaluation),
        priority=evaluation.rule.priority,
        data={
            "leadIntelligenceId": str(intelligence.id),
            "leadId": str(intelligence.lead_id) if intelligence.lead_id else None,
            "contactId": str(intelligence.contact_id) if intelligence.contact_id else None,
            "overallScore": intelligence.overall_score,
            "conversionProbability": intelligence.conversion_probability,
            "threshold": evaluation.threshold,
        },
        lead_key=intelligence.lead_key,
        dedupe_window=timedelta(hours=settings.ALERT_DEDUPE_WINDOW_HOURS),
    )


@dataclass
class AlertOutcome:
    rule_type: AlertRuleType
    triggered: bool
    priority: NotificationPriority | None = None
    message: str | None = None
    notification: Notification | None = None
    deduplicated: bool = False
    intelligence: LeadIntelligence | None = None


def get_intelligence_for_org(db: Session, org_id: UUID, intelligence_id: UUID) -> LeadIntelligence | None:
    return db.query(LeadIntelligence).filter(
        LeadIntelligence.id == intelligence_id,
        LeadIntelligence.org_id == org_id,
    ).first()


def process_alert(
    db: Session,
    *,
    org_id: UUID,
    lead_intelligence_id: UUID,
    rule_type: str,
    threshold: float | None = None,
    conditions: list[dict] | None = None,
) -> AlertOutcome:
    """
    Evaluate one rule for one record and notify on trigger.

    A trigger suppressed by dedupe still reports ``triggered=True`` with
    ``deduplicated=True`` and no new notification.
    """
    resolved = resolve_rule_type(rule_type)
    intelligence = get_intelligence_for_org(db, org_id, lead_intelligence_id)
    if intelligence is None:
        raise LeadIntelligenceNotFoundError("Lead intelligence record not found")

    evaluation = evaluate_rule(db, intelligence, resolved, threshold=threshold, conditions=conditions)
    if not evaluation.triggered:
        return AlertOutcome(
            rule_type=resolved, triggered=False, message="Conditions not met", intelligence=intelligence
        )

    notification = create_alert_notification(db, intelligence, evaluation)
    logger.info(
        "Intelligence alert triggered",
        extra=build_log_context(
            org_id=org_id,
            action="alert_triggered" if notification else "alert_deduplicated",
            rule_type=resolved.value,
        ),
    )
    return AlertOutcome(
        rule_type=resolved,
        triggered=True,
        priority=evaluation.rule.priority,
        message=notification.message if notification else build_alert_message(intelligence, evaluation),
        notification=notification,
        deduplicated=notification is None,
        intelligence=intelligence,
    )


@dataclass
class BatchAlert:
    type: AlertRuleType
    lead_intelligence_id: UUID
    lead_id: UUID | None
    contact_id: UUID | None
    notification_id: UUID
    score: int
    conversion_probability: float


@dataclass
class BatchResult:
    processed: int = 0
    alerts: list[BatchAlert] = field(default_factory=list)


def process_batch_alerts(
    db: Session,
    *,
    org_id: UUID,
    now: datetime | None = None,
) -> BatchResult:
    """Sweep records analyzed in the trailing window against the standard rule set."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.ALERT_BATCH_WINDOW_HOURS)
    records = (
        db.query(LeadIntelligence)
        .filter(
            LeadIntelligence.org_id == org_id,
            LeadIntelligence.last_analyzed_at >= cutoff,
        )
        .order_by(LeadIntelligence.last_analyzed_at.desc())
        .all()
    )

    result = BatchResult()
    for intelligence in records:
        result.processed += 1
        for rule_type, threshold in BATCH_THRESHOLDS.items():
            evaluation = evaluate_rule(db, intelligence, rule_type, threshold=threshold)
            if not evaluation.triggered:
                continue
            notification = create_alert_notification(db, intelligence, evaluation)
            if notification is None:
                continue
            result.alerts.append(
                BatchAlert(
                    type=rule_type,
                    lead_intelligence_id=intelligence.id,
                    lead_id=intelligence.lead_id,
                    contact_id=intelligence.contact_id,
                    notification_id=notification.id,
                    score=intelligence.overall_score,
                    conversion_probability=intelligence.conversion_probability,
                )
            )

    logger.info(
        "Batch alert sweep completed",
        extra=build_log_context(
            org_id=org_id,
            action="alert_batch_complete",
            processed=result.processed,
            alerts_triggered=len(result.alerts),
        ),
    )
    return result
