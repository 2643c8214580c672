"""
Static policy rule table keyed by (category, action).

Verdicts are a closed set of variants. The table is validated once at
construction: empty keys, duplicate keys and unknown verdict types are
rejected with InvalidRuleTableError instead of surfacing at decision time.
Operations without a rule get the table's declared default verdict.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from opsguard.domain.models.operation import CONTROL_PLANE_ACTIONS, CONTROL_PLANE_CATEGORY
from opsguard.governance.exceptions import InvalidRuleTableError

ContextPredicate = Callable[[Mapping[str, Any]], bool]


def always(_context: Mapping[str, Any]) -> bool:
    return True


@dataclass(frozen=True)
class AlwaysAllow:
    pass


@dataclass(frozen=True)
class AlwaysBlock:
    reason: Optional[str] = None


@dataclass(frozen=True)
class RequireApprovalIf:
    """Require approval when predicate(context) holds; otherwise allow."""

    predicate: ContextPredicate = always
    description: str = "requires human approval"


@dataclass(frozen=True)
class DelegateToAnomalyCheck:
    """Use recent anomaly severity for the source/agent; fall back to `fallback` when clean."""

    fallback: Union[AlwaysAllow, RequireApprovalIf] = AlwaysAllow()


PolicyVerdict = Union[AlwaysAllow, AlwaysBlock, RequireApprovalIf, DelegateToAnomalyCheck]

_VERDICT_TYPES = (AlwaysAllow, AlwaysBlock, RequireApprovalIf, DelegateToAnomalyCheck)


@dataclass(frozen=True)
class PolicyRule:
    category: str
    action: str
    verdict: PolicyVerdict

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.action)


class RuleTable:
    """Immutable (category, action) -> PolicyVerdict lookup."""

    def __init__(self, rules: Iterable[PolicyRule], default: PolicyVerdict) -> None:
        table: Dict[Tuple[str, str], PolicyVerdict] = {}
        for rule in rules:
            if not rule.category or not rule.action:
                raise InvalidRuleTableError(f"Rule has empty category or action: {rule!r}")
            _check_verdict(rule.verdict, f"{rule.category}:{rule.action}")
            if rule.key in table:
                raise InvalidRuleTableError(
                    f"Duplicate rule for {rule.category}:{rule.action}"
                )
            table[rule.key] = rule.verdict
        _check_verdict(default, "default")
        for action in CONTROL_PLANE_ACTIONS:
            verdict = table.get((CONTROL_PLANE_CATEGORY, action))
            if not isinstance(verdict, AlwaysAllow):
                raise InvalidRuleTableError(
                    f"Control-plane operation {CONTROL_PLANE_CATEGORY}:{action} must be always-allow"
                )
        self._table = table
        self._default = default

    def lookup(self, category: str, action: str) -> PolicyVerdict:
        return self._table.get((category, action), self._default)

    def has_rule(self, category: str, action: str) -> bool:
        return (category, action) in self._table

    @property
    def default(self) -> PolicyVerdict:
        return self._default

    def __len__(self) -> int:
        return len(self._table)


def _check_verdict(verdict: Any, where: str) -> None:
    if not isinstance(verdict, _VERDICT_TYPES):
        raise InvalidRuleTableError(f"Unknown verdict type for {where}: {type(verdict).__name__}")
    if isinstance(verdict, DelegateToAnomalyCheck) and not isinstance(
        verdict.fallback, (AlwaysAllow, RequireApprovalIf)
    ):
        raise InvalidRuleTableError(f"Anomaly-check fallback for {where} must allow or require approval")


def _non_get_request(context: Mapping[str, Any]) -> bool:
    return str(context.get("method", "GET")).upper() != "GET"


def _is_external(context: Mapping[str, Any]) -> bool:
    return bool(context.get("external", False))


CONTROL_PLANE_RULES = [
    PolicyRule(CONTROL_PLANE_CATEGORY, action, AlwaysAllow())
    for action in sorted(CONTROL_PLANE_ACTIONS)
]

# Auto-approve: read-only and low-impact writes.
# Anomaly-checked: routine writes that are fine unless the agent is misbehaving.
# Approval: direct messages, file writes, outbound API calls, skills.
# Blocked: shell, code execution, credentials, config and system changes.
DEFAULT_RULES = CONTROL_PLANE_RULES + [
    PolicyRule("read", "feed", AlwaysAllow()),
    PolicyRule("read", "post", AlwaysAllow()),
    PolicyRule("read", "profile", AlwaysAllow()),
    PolicyRule("read", "config", AlwaysAllow()),
    PolicyRule("read", "status", AlwaysAllow()),
    PolicyRule("write", "upvote", AlwaysAllow()),
    PolicyRule("post", "publish", AlwaysAllow()),
    PolicyRule("post", "comment", DelegateToAnomalyCheck()),
    PolicyRule("write", "post", DelegateToAnomalyCheck()),
    PolicyRule("write", "comment", DelegateToAnomalyCheck()),
    PolicyRule("write", "follow", DelegateToAnomalyCheck()),
    PolicyRule("read", "file_workspace", DelegateToAnomalyCheck()),
    PolicyRule("network", "known_domain", DelegateToAnomalyCheck()),
    PolicyRule("write", "dm", RequireApprovalIf(description="direct messages require approval")),
    PolicyRule("write", "file", RequireApprovalIf(description="file writes require approval")),
    PolicyRule(
        "network",
        "api_call",
        RequireApprovalIf(_non_get_request, "non-GET API calls require approval"),
    ),
    PolicyRule(
        "network",
        "unknown_domain",
        DelegateToAnomalyCheck(
            RequireApprovalIf(_is_external, "external requests require approval")
        ),
    ),
    PolicyRule("read", "file_sensitive", RequireApprovalIf(description="sensitive reads require approval")),
    PolicyRule("execute", "skill", RequireApprovalIf(description="skill execution requires approval")),
    PolicyRule("execute", "shell", AlwaysBlock()),
    PolicyRule("exec", "shell", AlwaysBlock()),
    PolicyRule("execute", "code", AlwaysBlock()),
    PolicyRule("execute", "self_modify", AlwaysBlock()),
    PolicyRule("execute", "rm_rf", AlwaysBlock()),
    PolicyRule("execute", "format", AlwaysBlock()),
    PolicyRule("execute", "shutdown", AlwaysBlock()),
    PolicyRule("credential", "read", AlwaysBlock()),
    PolicyRule("credential", "write", AlwaysBlock()),
    PolicyRule("credential", "export_all", AlwaysBlock()),
    PolicyRule("network", "external", AlwaysBlock()),
    PolicyRule("network", "tunnel", AlwaysBlock()),
    PolicyRule("write", "config", AlwaysBlock()),
    PolicyRule("write", "system_file", AlwaysBlock()),
]

DEFAULT_VERDICT: PolicyVerdict = RequireApprovalIf(description="no explicit rule; requires approval")


def default_rule_table() -> RuleTable:
    return RuleTable(DEFAULT_RULES, default=DEFAULT_VERDICT)
