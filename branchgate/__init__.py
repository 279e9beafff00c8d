"""
BranchGate - Branch Account Authentication and Audit Trail

This package provides credential verification with progressive lockout,
session tokens, email verification and password reset lifecycles, and a
sanitized security audit log for primary users and branch accounts.
"""

__version__ = "0.1.0"
__author__ = "BranchGate Team"
