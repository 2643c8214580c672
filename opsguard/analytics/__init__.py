"""Derived governance signals: trust scores, guardrail suggestions, fingerprints, risk reports.

Everything here is a pure function over a bounded history window. Results
are recomputed on request and never stored as authoritative state.
"""
