"""
BranchGate REST API.

FastAPI-based REST API for branch-account authentication.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
