"""
Concolic traces: the call-frame tree recorded by one run, its verifier, and
the flattening into a constraint stream.
"""

from .model import (
    TOPLEVEL,
    Assertion,
    AssertionKind,
    Branch,
    Event,
    Metadata,
    SiteId,
    TaintNote,
    TraceNode,
    format_trace,
)
from .verify import filter_trace, path_constraint, verify

__all__ = [
    "TOPLEVEL",
    "Assertion",
    "AssertionKind",
    "Branch",
    "Event",
    "Metadata",
    "SiteId",
    "TaintNote",
    "TraceNode",
    "format_trace",
    "filter_trace",
    "path_constraint",
    "verify",
]
