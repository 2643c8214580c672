"""Governance application service. Wires components from settings and exposes every governance verb. No HTTP."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from opsguard.analytics.fingerprint import GovernanceFingerprint, compute_fingerprint
from opsguard.analytics.guardrails import (
    GuardrailSuggestion,
    SuggestionKind,
    find_suggestion,
    suggest_guardrails,
)
from opsguard.analytics.risk_report import RiskReport, build_risk_report
from opsguard.analytics.trust_scoring import TrustScoreEntry, compute_trust_scores
from opsguard.config.settings import GovernanceSettings
from opsguard.core.clock import Clock, utc_now
from opsguard.domain.exceptions import NotFoundError
from opsguard.domain.models.operation import AuditResult, Decision, Operation
from opsguard.domain.validators.operation_validator import validate_actor
from opsguard.governance.approval_workflow import (
    ApprovalStatus,
    ApprovalWorkflow,
    PendingApproval,
)
from opsguard.governance.audit_log import AuditLog
from opsguard.governance.audit_logger import AuditLogger
from opsguard.governance.audit_models import (
    AuditEntry,
    ChainVerification,
    ImmutableAuditEntry,
    LedgerStats,
)
from opsguard.governance.immutable_audit import ImmutableAuditLog
from opsguard.governance.operation_overrides import (
    OperationOverride,
    OverrideAction,
    OverrideStore,
)
from opsguard.governance.policy_engine import (
    AuditFilter,
    GovernanceStats,
    PolicyEngine,
)
from opsguard.governance.policy_rules import RuleTable
from opsguard.governance.state import GovernanceState
from opsguard.governance.timed_permissions import PermissionCheck, PermissionStore, TimedPermission
from opsguard.infrastructure.storage.file_store import FileStorage
from opsguard.infrastructure.storage.interface import StorageBackend
from opsguard.infrastructure.storage.memory import InMemoryStorage
from opsguard.observability.metrics import MetricsCollector
from opsguard.security.anomaly_detector import AnomalyDetector, AnomalyEvent
from opsguard.security.content_sanitizer import ContentSanitizer
from opsguard.security.credential_vault import CredentialVault
from opsguard.workflows.interface import ApprovedOperationSink
from opsguard.workflows.logging_sink import LoggingOperationSink

logger = logging.getLogger(__name__)

# Boundary clamps for caller-supplied windows and limits.
MIN_WINDOW_HOURS = 1
MAX_REVIEW_WINDOW_HOURS = 168
MAX_FINGERPRINT_HOURS = 8760
MIN_LIMIT = 1
MAX_LIMIT = 500


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


@dataclass
class Storages:
    """Governance state store and the separate ledger store."""

    data: StorageBackend
    ledger: StorageBackend


class GovernanceService:
    """
    Facade over the policy engine, approvals, audit views, anomaly detector,
    vault and derived signals. Owns no state of its own beyond wiring.
    """

    def __init__(
        self,
        *,
        engine: PolicyEngine,
        approvals: ApprovalWorkflow,
        audit_logger: AuditLogger,
        anomaly_detector: AnomalyDetector,
        vault: CredentialVault,
        overrides: OverrideStore,
        permissions: PermissionStore,
        metrics: MetricsCollector,
        settings: GovernanceSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._engine = engine
        self._approvals = approvals
        self._audit = audit_logger
        self._detector = anomaly_detector
        self._vault = vault
        self._overrides = overrides
        self._permissions = permissions
        self._metrics = metrics
        self._settings = settings
        self._clock = clock

    @classmethod
    def build(
        cls,
        settings: GovernanceSettings,
        storages: Storages,
        *,
        clock: Clock = utc_now,
        sink: Optional[ApprovedOperationSink] = None,
        rule_table: Optional[RuleTable] = None,
    ) -> "GovernanceService":
        """Wire every component over the given storages. Nothing is loaded yet; see restore()."""
        state = GovernanceState()
        audit_logger = AuditLogger(
            AuditLog(storages.data, max_entries=settings.audit_log_max_entries),
            ImmutableAuditLog(storages.ledger, clock=clock),
            timeout_seconds=settings.audit_write_timeout_seconds,
            state=state,
        )
        approvals = ApprovalWorkflow(
            storages.data,
            audit_logger,
            state,
            ttl=timedelta(minutes=settings.approval_ttl_minutes),
            clock=clock,
            sink=sink or LoggingOperationSink(),
        )
        detector = AnomalyDetector(
            storages.data,
            clock=clock,
            rate_spike_tolerance=settings.rate_spike_tolerance,
        )
        overrides = OverrideStore(storages.data, clock=clock)
        permissions = PermissionStore(storages.data, audit_logger, clock=clock)
        metrics = MetricsCollector()
        engine = PolicyEngine(
            state=state,
            audit_logger=audit_logger,
            approvals=approvals,
            anomaly_detector=detector,
            rule_table=rule_table,
            overrides=overrides,
            permissions=permissions,
            content_sanitizer=ContentSanitizer(strict=settings.strict_content_sanitization),
            metrics=metrics if settings.enable_metrics else None,
            clock=clock,
            anomaly_window=timedelta(minutes=settings.anomaly_lookback_minutes),
            anomaly_timeout_seconds=settings.anomaly_check_timeout_seconds,
            trust_auto_approve_threshold=settings.trust_auto_approve_threshold,
            trust_half_life_hours=settings.trust_half_life_hours,
        )
        vault = CredentialVault(
            storages.data,
            kdf_iterations=settings.vault_kdf_iterations,
            clock=clock,
        )
        return cls(
            engine=engine,
            approvals=approvals,
            audit_logger=audit_logger,
            anomaly_detector=detector,
            vault=vault,
            overrides=overrides,
            permissions=permissions,
            metrics=metrics,
            settings=settings,
            clock=clock,
        )

    @classmethod
    async def create(
        cls,
        settings: GovernanceSettings,
        *,
        clock: Clock = utc_now,
        sink: Optional[ApprovedOperationSink] = None,
    ) -> "GovernanceService":
        """Build storages from settings, wire the service and reload persisted state."""
        service = cls.build(settings, await create_storages(settings), clock=clock, sink=sink)
        await service.restore()
        return service

    async def restore(self) -> None:
        loaded = {
            "audit_entries": await self._audit.audit_log.restore(),
            "approvals": await self._approvals.restore(),
            "anomalies": await self._detector.restore(),
            "overrides": await self._overrides.restore(),
            "permissions": await self._permissions.restore(),
        }
        verification = await self._audit.ledger.verify_chain()
        if self._settings.vault_master_key is not None:
            await self._vault.initialize(self._settings.vault_master_key.get_secret_value())
        logger.info(
            "governance_restored",
            extra={**loaded, "ledger_entries": verification.entries, "chain_valid": verification.valid},
        )

    # --- Decisions and the pause switch ---

    async def evaluate(self, operation: Operation) -> Decision:
        return await self._engine.evaluate(operation)

    async def pause(self, actor: str = "dashboard") -> bool:
        return await self._engine.pause(actor)

    async def resume(self, actor: str = "dashboard") -> bool:
        return await self._engine.resume(actor)

    async def get_stats(self) -> GovernanceStats:
        return await self._engine.get_stats()

    # --- Approvals ---

    async def get_pending_approvals(self) -> List[PendingApproval]:
        return await self._approvals.get_pending_approvals()

    async def list_approvals(self, status: Optional[ApprovalStatus] = None) -> List[PendingApproval]:
        return await self._approvals.list_approvals(status)

    async def approve(self, approval_id: str, approved_by: str) -> bool:
        return await self._approvals.approve(approval_id, approved_by)

    async def deny(self, approval_id: str, denied_by: str, reason: Optional[str] = None) -> bool:
        return await self._approvals.deny(approval_id, denied_by, reason)

    async def resolve_approval(
        self,
        approval_id: str,
        *,
        approved: bool,
        actor: str,
        reason: Optional[str] = None,
    ) -> PendingApproval:
        """Typed-failure variant of approve/deny for callers that distinguish not-found from resolved."""
        return await self._approvals.resolve(approval_id, approved=approved, actor=actor, reason=reason)

    # --- Audit views ---

    def get_audit_log(
        self,
        *,
        since: Optional[datetime] = None,
        result: Optional[AuditResult] = None,
        user_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        return self._engine.get_audit_log(
            AuditFilter(
                since=since,
                result=result,
                user_id=user_id,
                agent_id=agent_id,
                limit=clamp(limit, MIN_LIMIT, MAX_LIMIT),
            )
        )

    async def read_recent_audit(self, limit: int = 50) -> List[ImmutableAuditEntry]:
        return await self._audit.ledger.read_recent(clamp(limit, MIN_LIMIT, MAX_LIMIT))

    async def verify_audit_chain(self) -> ChainVerification:
        return await self._audit.ledger.verify_chain()

    async def ensure_audit_chain_intact(self) -> ChainVerification:
        return await self._audit.ledger.ensure_intact()

    async def get_audit_stats(self) -> LedgerStats:
        return await self._audit.ledger.get_stats()

    # --- Anomalies ---

    async def get_anomalies(
        self,
        since: Optional[datetime] = None,
        hours: Optional[int] = None,
    ) -> List[AnomalyEvent]:
        if since is None and hours is not None:
            since = self._clock() - timedelta(hours=clamp(hours, MIN_WINDOW_HOURS, MAX_REVIEW_WINDOW_HOURS))
        return await self._detector.get_events(since)

    async def mark_anomaly_reviewed(self, anomaly_id: str) -> bool:
        return await self._detector.mark_reviewed(anomaly_id)

    # --- Vault ---

    @property
    def vault(self) -> CredentialVault:
        return self._vault

    async def initialize_vault(self, master_key: str) -> None:
        await self._vault.initialize(master_key)

    async def store_credential(self, label: str, plaintext: str) -> str:
        return await self._vault.store(label, plaintext)

    async def retrieve_credential(self, credential_id: str) -> str:
        return await self._vault.retrieve(credential_id)

    async def delete_credential(self, credential_id: str) -> bool:
        return await self._vault.delete(credential_id)

    async def rotate_credential(self, credential_id: str, plaintext: str) -> Dict[str, Any]:
        return (await self._vault.rotate(credential_id, plaintext)).metadata()

    async def list_credentials(self) -> List[Dict[str, Any]]:
        return await self._vault.list_credentials()

    # --- Overrides ---

    async def add_override(
        self,
        *,
        operation: str,
        action: OverrideAction,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
        source: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
        operator_id: Optional[str] = None,
    ) -> OperationOverride:
        return await self._overrides.add(
            operation=operation,
            action=action,
            target=target,
            agent_id=agent_id,
            source=source,
            expires_at=expires_at,
            reason=reason,
            operator_id=operator_id,
        )

    async def remove_override(self, override_id: str) -> bool:
        return await self._overrides.remove(override_id)

    def list_overrides(self) -> List[OperationOverride]:
        return self._overrides.list()

    # --- Timed permissions ---

    async def grant_permission(
        self,
        *,
        operation: str,
        duration_minutes: int,
        granted_by: str,
        reason: str,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
        max_uses: Optional[int] = None,
    ) -> TimedPermission:
        return await self._permissions.grant(
            operation=operation,
            duration=timedelta(minutes=duration_minutes),
            granted_by=validate_actor(granted_by, "granted_by"),
            reason=reason,
            target=target,
            agent_id=agent_id,
            max_uses=max_uses,
        )

    async def revoke_permission(self, permission_id: str, revoked_by: str, reason: Optional[str] = None) -> bool:
        return await self._permissions.revoke(permission_id, validate_actor(revoked_by, "revoked_by"), reason)

    def check_permission(
        self,
        operation: str,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> PermissionCheck:
        return self._permissions.check(operation, target, agent_id)

    async def list_permissions(
        self,
        agent_id: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[TimedPermission]:
        """Expired grants are swept first so listings never show a lapsed grant as active."""
        await self._permissions.sweep_expired()
        if include_inactive:
            return self._permissions.list_all(agent_id)
        return self._permissions.list_active(agent_id)

    async def sweep_expired_permissions(self) -> int:
        return await self._permissions.sweep_expired()

    # --- Derived signals ---

    async def get_trust_scores(self, window_hours: int = 168) -> List[TrustScoreEntry]:
        hours = clamp(window_hours, MIN_WINDOW_HOURS, MAX_REVIEW_WINDOW_HOURS)
        now = self._clock()
        since = now - timedelta(hours=hours)
        return compute_trust_scores(
            self._audit.audit_log.query(since=since),
            await self._detector.get_events(since),
            now=now,
            window_hours=hours,
            half_life_hours=self._settings.trust_half_life_hours,
        )

    def get_suggested_guardrails(self, hours: int = 24) -> List[GuardrailSuggestion]:
        hours = clamp(hours, MIN_WINDOW_HOURS, MAX_REVIEW_WINDOW_HOURS)
        now = self._clock()
        return suggest_guardrails(
            self._audit.audit_log.query(since=now - timedelta(hours=hours)),
            now=now,
            hours=hours,
            block_threshold=self._settings.guardrail_block_threshold,
            approve_threshold=self._settings.guardrail_approve_threshold,
        )

    async def apply_suggestion(
        self,
        suggestion_id: str,
        operator_id: str,
        hours: int = 24,
    ) -> OperationOverride:
        """Turn a current suggestion into an override. Only ever called on explicit operator request."""
        operator_id = validate_actor(operator_id, "operator_id")
        suggestion = find_suggestion(self.get_suggested_guardrails(hours), suggestion_id)
        if suggestion is None:
            raise NotFoundError(f"Guardrail suggestion not found: {suggestion_id}")
        if suggestion.kind == SuggestionKind.ALWAYS_BLOCK:
            action, target, source = OverrideAction.BLOCK, None, suggestion.source
        else:
            action, target, source = OverrideAction.ALLOW, suggestion.target, None
        override = await self._overrides.add(
            operation=suggestion.operation,
            action=action,
            target=target,
            source=source,
            reason=f"Applied from suggestion {suggestion.id}",
            operator_id=operator_id,
        )
        logger.info(
            "guardrail_suggestion_applied",
            extra={"suggestion_id": suggestion.id, "override_id": override.id, "operator_id": operator_id},
        )
        return override

    def get_fingerprint(self, operator_id: str, hours: int = 720) -> GovernanceFingerprint:
        operator_id = validate_actor(operator_id, "operator_id")
        hours = clamp(hours, MIN_WINDOW_HOURS, MAX_FINGERPRINT_HOURS)
        now = self._clock()
        return compute_fingerprint(
            self._audit.audit_log.query(since=now - timedelta(hours=hours)),
            operator_id=operator_id,
            now=now,
            hours=hours,
        )

    async def get_risk_report(self, hours: int = 24) -> RiskReport:
        hours = clamp(hours, MIN_WINDOW_HOURS, MAX_REVIEW_WINDOW_HOURS)
        now = self._clock()
        since = now - timedelta(hours=hours)
        verification = await self._audit.ledger.verify_chain()
        return build_risk_report(
            self._audit.audit_log.query(since=since),
            await self._detector.get_events(since),
            self.get_suggested_guardrails(hours),
            now=now,
            hours=hours,
            chain_valid=verification.valid,
        )

    def get_metrics(self) -> Dict[str, Any]:
        return self._metrics.export_metrics()


async def create_storages(settings: GovernanceSettings) -> Storages:
    if settings.storage_backend == "memory":
        return Storages(data=InMemoryStorage(), ledger=InMemoryStorage())
    if settings.storage_backend == "file":
        return Storages(data=FileStorage(Path(settings.data_dir)), ledger=FileStorage(Path(settings.audit_dir)))

    # Deferred so memory/file deployments never import the database driver.
    from opsguard.infrastructure.database.session import (
        create_engine,
        create_sessionmaker,
        init_schema,
    )
    from opsguard.infrastructure.database.sql_storage import SqlStorage

    if settings.database_url.startswith("sqlite") and ":memory:" not in settings.database_url:
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    engine = create_engine(settings.database_url)
    await init_schema(engine)
    storage = SqlStorage(create_sessionmaker(engine))
    # Ledger rows live in their own table; one backend serves both roles.
    return Storages(data=storage, ledger=storage)
