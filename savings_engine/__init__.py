"""
Savings Engine - Source Package

The allocation and projection core of a personal-finance app: every
detected income event is split across the user's savings plans in a
virtual ledger, and each plan is forecast, scored and given advice.

DESIGN PRINCIPLES:
1. Allocations are facts - appended once, never rewritten
2. Processing is idempotent and safe to re-run at any time
3. Cached totals can always be rebuilt from history
4. Advisory outputs (health, recommendations) never break the caller
5. Store and clock are injected, never imported as singletons
"""

__version__ = "1.0.0"
__author__ = "Savings Engine Team"
