"""
driftguard - package root

File: src/driftguard/__init__.py

Purpose
- Validation execution engine that exercises a live HTTP API and reports drift
  against its OpenAPI contract.

Import boundary rules
- Must not have side effects at import time (no logging setup, no signal handlers).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
