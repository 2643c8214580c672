"""Governance: policy engine, approval workflow, audit log and hash-chained ledger. No FastAPI.

Import from the submodules directly; analytics depends on the audit models
here, and the policy engine depends on analytics.
"""
