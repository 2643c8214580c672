"""
Policy engine: the single entry point that turns an Operation into a Decision.

Order of evaluation: validation, pause switch, static rule table, operation
overrides, anomaly classifiers and delegated anomaly checks, timed
permissions, optional trust auto-approval. Operation content is sanitized
once up front and never logged. Every evaluation writes exactly one
query-side audit entry and one ledger entry. Audit failures mark the
Decision as degraded but never change it.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from opsguard.analytics.trust_scoring import (
    compute_trust_scores,
    qualifies_for_auto_approval,
    subject_of,
)
from opsguard.core.clock import Clock, utc_now
from opsguard.domain.models.operation import (
    CONTROL_PLANE_CATEGORY,
    PAUSED_REASON,
    AuditResult,
    Decision,
    DecisionResult,
    Operation,
    Severity,
)
from opsguard.domain.validators.operation_validator import validate_actor, validate_operation
from opsguard.governance.approval_workflow import ApprovalWorkflow
from opsguard.governance.audit_logger import AuditLogger
from opsguard.governance.audit_models import AuditEntry, LedgerEvent
from opsguard.governance.exceptions import PersistenceDegradedError
from opsguard.governance.operation_overrides import OverrideAction, OverrideStore
from opsguard.governance.policy_rules import (
    AlwaysAllow,
    AlwaysBlock,
    DelegateToAnomalyCheck,
    PolicyVerdict,
    RequireApprovalIf,
    RuleTable,
    default_rule_table,
)
from opsguard.governance.state import GovernanceState
from opsguard.governance.timed_permissions import PermissionStore
from opsguard.observability.metrics import (
    ANOMALIES_TOTAL,
    AUDIT_FAILURES_TOTAL,
    MetricsCollector,
)
from opsguard.security.anomaly_detector import AnomalyDetector, AnomalyEvent
from opsguard.security.content_sanitizer import ContentSanitizer, SanitizationResult

logger = logging.getLogger(__name__)

TRUST_WINDOW_HOURS = 168


@dataclass(frozen=True)
class AuditFilter:
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    result: Optional[AuditResult] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class GovernanceStats:
    total_operations: int
    allowed: int
    blocked: int
    pending_approvals: int
    anomalies: int
    is_paused: bool
    approval_requests: int
    approved: int
    denied: int
    expired: int
    audit_failures: int

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))


@dataclass
class _Outcome:
    result: DecisionResult
    reason: str
    # Approval forced by anomalies or an "ask" override is never lifted by a timed permission or trust.
    escalated: bool = False


class PolicyEngine:
    """Decides, records and counts. Never executes the operation itself."""

    def __init__(
        self,
        *,
        state: GovernanceState,
        audit_logger: AuditLogger,
        approvals: ApprovalWorkflow,
        anomaly_detector: AnomalyDetector,
        rule_table: Optional[RuleTable] = None,
        overrides: Optional[OverrideStore] = None,
        permissions: Optional[PermissionStore] = None,
        content_sanitizer: Optional[ContentSanitizer] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Clock = utc_now,
        anomaly_window: timedelta = timedelta(minutes=15),
        anomaly_timeout_seconds: float = 1.0,
        trust_auto_approve_threshold: Optional[float] = None,
        trust_half_life_hours: float = 72.0,
    ) -> None:
        self._state = state
        self._audit = audit_logger
        self._approvals = approvals
        self._detector = anomaly_detector
        self._rules = rule_table or default_rule_table()
        self._overrides = overrides
        self._permissions = permissions
        self._sanitizer = content_sanitizer or ContentSanitizer()
        self._metrics = metrics
        self._clock = clock
        self._anomaly_window = anomaly_window
        self._anomaly_timeout = anomaly_timeout_seconds
        self._trust_threshold = trust_auto_approve_threshold
        self._trust_half_life = trust_half_life_hours

    @property
    def rule_table(self) -> RuleTable:
        return self._rules

    async def evaluate(self, operation: Operation) -> Decision:
        """Raises ValidationError for malformed operations before anything is written."""
        validate_operation(operation)
        started = time.perf_counter()

        content = _content_of(operation)
        sanitization = self._sanitizer.sanitize_incoming(content) if content is not None else None
        outcome = await self._decide(operation, sanitization)
        approval_id: Optional[str] = None
        audit_reason = outcome.reason
        if outcome.result == DecisionResult.PENDING_APPROVAL:
            approval = await self._approvals.request(operation, outcome.reason)
            approval_id = approval.id
            audit_reason = f"pending approval {approval.id}: {outcome.reason}"

        sanitized_content, warnings = self._screen(operation, sanitization)
        decision = Decision(
            result=outcome.result,
            reason=outcome.reason,
            approval_id=approval_id,
            sanitized_content=sanitized_content,
            warnings=warnings,
        )
        entry = AuditEntry.for_operation(
            entry_id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            result=decision.audit_result,
            operation=operation,
            reason=audit_reason,
            approval_id=approval_id,
        )
        try:
            await self._audit.record(entry, LedgerEvent.OPERATION_CHECK)
        except PersistenceDegradedError:
            decision = replace(decision, audit_degraded=True)
            if self._metrics is not None:
                self._metrics.increment(AUDIT_FAILURES_TOTAL, operation=operation.key)

        await self._state.record_decision(decision.result)
        latency_ms = (time.perf_counter() - started) * 1000
        if self._metrics is not None:
            self._metrics.record_decision(operation.key, decision.result.value, latency_ms)
        logger.info(
            "operation_evaluated",
            extra={
                "operation": operation.key,
                "source": operation.source,
                "agent_id": operation.agent_id,
                "result": decision.result.value,
                "approval_id": approval_id,
                "audit_degraded": decision.audit_degraded,
                "latency_ms": round(latency_ms, 2),
            },
        )
        return decision

    def _screen(
        self,
        operation: Operation,
        sanitization: Optional[SanitizationResult],
    ) -> Tuple[Optional[str], Tuple[str, ...]]:
        """Sanitized content with credentials redacted, plus warnings for threats that did not block."""
        if sanitization is None:
            return None, ()
        outbound = self._sanitizer.sanitize_outgoing(sanitization.sanitized)
        warnings = [
            f"{t.severity.value} {t.type.value}: {t.description}"
            for t in sanitization.threats
            if t.severity != Severity.CRITICAL
        ]
        warnings.extend(f"redacted {leak}" for leak in outbound.leaks)
        if sanitization.threats or outbound.leaks:
            logger.warning(
                "content_threats_detected",
                extra={
                    "operation": operation.key,
                    "source": operation.source,
                    "threat_types": sanitization.threat_types,
                    "leaks": list(outbound.leaks),
                    "confidence": sanitization.confidence,
                },
            )
        return outbound.sanitized, tuple(dict.fromkeys(warnings))

    async def _decide(
        self,
        operation: Operation,
        sanitization: Optional[SanitizationResult] = None,
    ) -> _Outcome:
        if not operation.is_control_plane and await self._state.is_paused():
            return _Outcome(DecisionResult.BLOCKED, PAUSED_REASON)

        verdict = self._rules.lookup(operation.category, operation.action)
        if isinstance(verdict, AlwaysBlock):
            return _Outcome(
                DecisionResult.BLOCKED,
                verdict.reason or f"Operation {operation.key} is blocked by policy",
            )
        if operation.is_control_plane:
            return _Outcome(DecisionResult.ALLOWED, f"Control-plane operation {operation.key}")

        delegated = isinstance(verdict, DelegateToAnomalyCheck)
        outcome = self._apply_verdict(
            verdict.fallback if isinstance(verdict, DelegateToAnomalyCheck) else verdict,
            operation,
        )

        if self._overrides is not None:
            override = self._overrides.resolve(
                operation.key, operation.target, operation.agent_id, operation.source
            )
            if override is not None:
                label = override.reason or f"override {override.id}"
                if override.action == OverrideAction.BLOCK:
                    return _Outcome(DecisionResult.BLOCKED, f"Blocked by override: {label}")
                if override.action == OverrideAction.ALLOW:
                    outcome = _Outcome(DecisionResult.ALLOWED, f"Allowed by override: {label}")
                else:
                    outcome = _Outcome(
                        DecisionResult.PENDING_APPROVAL,
                        f"Approval required by override: {label}",
                        escalated=True,
                    )

        anomaly_check_failed = False
        try:
            outcome = await asyncio.wait_for(
                self._check_anomalies(operation, outcome, delegated, sanitization),
                timeout=self._anomaly_timeout,
            )
        except asyncio.TimeoutError:
            anomaly_check_failed = True
            logger.warning(
                "anomaly_check_timed_out",
                extra={"operation": operation.key, "source": operation.source},
            )
        except Exception as e:
            anomaly_check_failed = True
            logger.error(
                "anomaly_check_failed",
                extra={
                    "operation": operation.key,
                    "source": operation.source,
                    "error_type": type(e).__name__,
                },
            )
        if anomaly_check_failed:
            if delegated and outcome.result == DecisionResult.ALLOWED:
                outcome = _Outcome(
                    DecisionResult.PENDING_APPROVAL,
                    "Anomaly history unavailable; requires approval",
                    escalated=True,
                )
        if outcome.result != DecisionResult.PENDING_APPROVAL or outcome.escalated:
            return outcome

        if self._permissions is not None:
            permission = await self._permissions.consume(
                operation.key, operation.target, operation.agent_id
            )
            if permission is not None:
                return _Outcome(
                    DecisionResult.ALLOWED,
                    f"Allowed by timed permission {permission.id} granted by {permission.granted_by}",
                )

        if self._trust_threshold is not None:
            trusted = await self._trusted_score(operation)
            if trusted is not None:
                return _Outcome(
                    DecisionResult.ALLOWED,
                    f"Auto-approved: trust score {trusted:.2f} for {subject_of(operation.agent_id, operation.source)}",
                )
        return outcome

    def _apply_verdict(self, verdict: PolicyVerdict, operation: Operation) -> _Outcome:
        if isinstance(verdict, AlwaysAllow):
            return _Outcome(DecisionResult.ALLOWED, f"Operation {operation.key} allowed by policy")
        if isinstance(verdict, RequireApprovalIf):
            if verdict.predicate(operation.context):
                return _Outcome(DecisionResult.PENDING_APPROVAL, verdict.description)
            return _Outcome(DecisionResult.ALLOWED, f"Operation {operation.key} allowed by policy")
        # RuleTable rejects anything else at construction.
        raise TypeError(f"Unexpected verdict {type(verdict).__name__}")

    async def _check_anomalies(
        self,
        operation: Operation,
        outcome: _Outcome,
        delegated: bool,
        sanitization: Optional[SanitizationResult] = None,
    ) -> _Outcome:
        findings = await self._classify(operation, sanitization)
        if self._metrics is not None and findings:
            self._metrics.increment(ANOMALIES_TOTAL, value=len(findings), operation=operation.key)

        critical = [f for f in findings if f.severity == Severity.CRITICAL]
        if critical:
            return _Outcome(DecisionResult.BLOCKED, "; ".join(f.description for f in critical))
        high = [f for f in findings if f.severity == Severity.HIGH]
        if high and outcome.result == DecisionResult.ALLOWED:
            outcome = _Outcome(
                DecisionResult.PENDING_APPROVAL,
                "; ".join(f.description for f in high),
                escalated=True,
            )

        if delegated and outcome.result == DecisionResult.ALLOWED:
            severity = await self._detector.recent_max_severity(
                operation.source, operation.agent_id, self._anomaly_window
            )
            if severity is not None and severity.rank >= Severity.HIGH.rank:
                outcome = _Outcome(
                    DecisionResult.PENDING_APPROVAL,
                    f"Recent {severity.value} anomaly for {operation.source}; requires approval",
                    escalated=True,
                )
        return outcome

    async def _classify(
        self,
        operation: Operation,
        sanitization: Optional[SanitizationResult] = None,
    ) -> List[AnomalyEvent]:
        source, agent_id = operation.source, operation.agent_id
        findings: List[AnomalyEvent] = []
        content = _content_of(operation)
        if content is not None:
            findings.extend(await self._detector.check_content(content, source, agent_id, sanitization))
        file_path = operation.context.get("file_path")
        if isinstance(file_path, str) and file_path:
            event = await self._detector.check_file_access(file_path, source, agent_id)
            if event is not None:
                findings.append(event)
        url = _network_url(operation)
        if url:
            method = str(operation.context.get("method", "GET"))
            event = await self._detector.check_network_request(url, source, method, agent_id)
            if event is not None:
                findings.append(event)
        spike = await self._detector.log_activity(operation.category, source, agent_id)
        if spike is not None:
            findings.append(spike)
        return findings

    async def _trusted_score(self, operation: Operation) -> Optional[float]:
        """Same history as the reported trust scores: audit entries and anomalies in the window."""
        now = self._clock()
        since = now - timedelta(hours=TRUST_WINDOW_HOURS)
        subject = subject_of(operation.agent_id, operation.source)
        try:
            scores = compute_trust_scores(
                self._audit.audit_log.query(since=since),
                await self._detector.get_events(since),
                now=now,
                window_hours=TRUST_WINDOW_HOURS,
                half_life_hours=self._trust_half_life,
            )
        except Exception as e:
            logger.warning("trust_score_unavailable", extra={"error_type": type(e).__name__})
            return None
        score = next((s for s in scores if s.subject_id == subject), None)
        if qualifies_for_auto_approval(score, self._trust_threshold, now):
            return score.score
        return None

    async def pause(self, actor: str = "dashboard") -> bool:
        """Returns True when the switch flipped; a repeated pause is a logged no-op."""
        return await self._set_paused(True, actor)

    async def resume(self, actor: str = "dashboard") -> bool:
        return await self._set_paused(False, actor)

    async def _set_paused(self, paused: bool, actor: str) -> bool:
        actor = validate_actor(actor)
        action, event = ("pause", LedgerEvent.AGENT_PAUSED) if paused else ("resume", LedgerEvent.AGENT_RESUMED)
        if not await self._state.set_paused(paused):
            logger.info("governance_switch_noop", extra={"action": action, "actor": actor})
            return False
        operation = Operation(
            category=CONTROL_PLANE_CATEGORY,
            action=action,
            source=actor,
            user_id=actor,
        )
        entry = AuditEntry.for_operation(
            entry_id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            result=AuditResult.ALLOWED,
            operation=operation,
            reason=f"{'Paused' if paused else 'Resumed'} by {actor}",
        )
        try:
            await self._audit.record(entry, event)
        except PersistenceDegradedError:
            logger.warning("governance_switch_audit_degraded", extra={"action": action, "actor": actor})
            if self._metrics is not None:
                self._metrics.increment(AUDIT_FAILURES_TOTAL, operation=operation.key)
        logger.warning("governance_switch_changed", extra={"action": action, "actor": actor})
        return True

    async def is_paused(self) -> bool:
        return await self._state.is_paused()

    async def get_stats(self) -> GovernanceStats:
        snapshot = await self._state.snapshot()
        counters = snapshot.counters
        return GovernanceStats(
            total_operations=counters.total_operations,
            allowed=counters.allowed,
            blocked=counters.blocked,
            pending_approvals=await self._approvals.count_pending(),
            anomalies=await self._detector.count(),
            is_paused=snapshot.is_paused,
            approval_requests=counters.approval_requests,
            approved=counters.approved,
            denied=counters.denied,
            expired=counters.expired,
            audit_failures=counters.audit_failures,
        )

    def get_audit_log(self, audit_filter: Optional[AuditFilter] = None) -> List[AuditEntry]:
        f = audit_filter or AuditFilter()
        return self._audit.audit_log.query(
            since=f.since,
            until=f.until,
            result=f.result,
            user_id=f.user_id,
            agent_id=f.agent_id,
            limit=f.limit,
        )


def _network_url(operation: Operation) -> Optional[str]:
    url = operation.context.get("url")
    if isinstance(url, str) and url:
        return url
    if operation.category == "network" and operation.target and "://" in operation.target:
        return operation.target
    return None


def _content_of(operation: Operation) -> Optional[str]:
    content = operation.context.get("content")
    if isinstance(content, str) and content.strip():
        return content
    return None
