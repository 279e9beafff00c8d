"""
Shared utilities for BranchGate.

This package provides:
- Secrets management
- Clock helpers (UTC timestamps, injectable in tests)
"""
from .secrets import get_secret, mask_secret
from .clock import utcnow, ensure_utc, Clock

__all__ = ["get_secret", "mask_secret", "utcnow", "ensure_utc", "Clock"]
