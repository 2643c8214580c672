"""JsonFormatter: context ids and structured extras in every record."""

import json
import logging

from opsguard.config.logging import JsonFormatter
from opsguard.core.context import correlation_id_ctx, operator_id_ctx


def _record(**extra):
    record = logging.LogRecord("opsguard.test", logging.INFO, __file__, 1, "operation_evaluated", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_context_and_extras():
    cid = correlation_id_ctx.set("corr-1")
    oid = operator_id_ctx.set("alice")
    try:
        out = json.loads(JsonFormatter().format(_record(operation="post:publish", result="allowed")))
    finally:
        correlation_id_ctx.reset(cid)
        operator_id_ctx.reset(oid)

    assert out["message"] == "operation_evaluated"
    assert out["level"] == "INFO"
    assert out["correlation_id"] == "corr-1"
    assert out["operator_id"] == "alice"
    assert out["operation"] == "post:publish"
    assert out["result"] == "allowed"


def test_formatter_stringifies_unknown_types():
    out = json.loads(JsonFormatter().format(_record(when=object())))
    assert isinstance(out["when"], str)
