"""Pact - intent atom governance.

Two cores:
- AtomRegistry: atom lifecycle, quality-gated commits, supersession chains.
- CouplingAnalyzer: which tests verify which atoms, and the CI gate over it.
"""

from __future__ import annotations

__version__ = "0.1.0"
