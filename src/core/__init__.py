"""
Check Updates - Core Package
"""

from core.engine import UpdateChecker, run_check
from core.nagios import Severity, Verdict

__all__ = ["UpdateChecker", "run_check", "Severity", "Verdict"]
