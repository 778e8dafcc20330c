"""
Captain - autonomous development orchestrator.

Drives one task at a time through triage, planning, execution and
risk-proportional verification, with a checkpoint before every mutating
step and a hard stop whenever a human has to decide.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
