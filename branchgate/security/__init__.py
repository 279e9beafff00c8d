"""
Security audit utilities for BranchGate.

This package provides:
- Audit payload sanitization (deny-listed fields redacted, cards masked)
- The append-only audit trail with anomaly detection
"""
from .sanitizer import sanitize_details, mask_card, REDACTED
from .audit import (
    AuditTrail,
    AuditKind,
    AuditEvent,
    Anomaly,
    Severity,
)

__all__ = [
    "sanitize_details",
    "mask_card",
    "REDACTED",
    "AuditTrail",
    "AuditKind",
    "AuditEvent",
    "Anomaly",
    "Severity",
]
