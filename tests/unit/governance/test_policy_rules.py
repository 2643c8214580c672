"""Rule table validation at construction and lookups with the declared default."""

import pytest

from opsguard.governance.exceptions import InvalidRuleTableError
from opsguard.governance.policy_rules import (
    CONTROL_PLANE_RULES,
    AlwaysAllow,
    AlwaysBlock,
    DelegateToAnomalyCheck,
    PolicyRule,
    RequireApprovalIf,
    RuleTable,
    default_rule_table,
)


def test_default_table_is_valid_and_blocks_shell():
    table = default_rule_table()
    assert isinstance(table.lookup("execute", "shell"), AlwaysBlock)
    assert isinstance(table.lookup("post", "publish"), AlwaysAllow)
    assert isinstance(table.lookup("governance", "pause"), AlwaysAllow)
    assert isinstance(table.lookup("unknown", "thing"), RequireApprovalIf)
    assert table.has_rule("write", "dm")
    assert not table.has_rule("unknown", "thing")


def test_duplicate_key_is_rejected():
    rules = CONTROL_PLANE_RULES + [
        PolicyRule("post", "publish", AlwaysAllow()),
        PolicyRule("post", "publish", AlwaysBlock()),
    ]
    with pytest.raises(InvalidRuleTableError) as exc_info:
        RuleTable(rules, default=AlwaysBlock())
    assert exc_info.value.code == "invalid_rule_table"


def test_empty_key_is_rejected():
    with pytest.raises(InvalidRuleTableError):
        RuleTable(CONTROL_PLANE_RULES + [PolicyRule("", "publish", AlwaysAllow())], default=AlwaysBlock())


def test_unknown_verdict_is_rejected():
    with pytest.raises(InvalidRuleTableError):
        RuleTable(CONTROL_PLANE_RULES + [PolicyRule("post", "publish", "allow")], default=AlwaysBlock())
    with pytest.raises(InvalidRuleTableError):
        RuleTable(CONTROL_PLANE_RULES, default=None)


def test_delegate_fallback_must_not_block():
    with pytest.raises(InvalidRuleTableError):
        RuleTable(
            CONTROL_PLANE_RULES + [PolicyRule("post", "publish", DelegateToAnomalyCheck(AlwaysBlock()))],
            default=AlwaysBlock(),
        )


def test_control_plane_rules_are_required_and_must_allow():
    with pytest.raises(InvalidRuleTableError):
        RuleTable([PolicyRule("post", "publish", AlwaysAllow())], default=AlwaysBlock())
    blocked_pause = [
        PolicyRule(r.category, r.action, AlwaysBlock() if r.action == "pause" else r.verdict)
        for r in CONTROL_PLANE_RULES
    ]
    with pytest.raises(InvalidRuleTableError):
        RuleTable(blocked_pause, default=AlwaysBlock())
