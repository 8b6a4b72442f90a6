"""
Check Updates - Verdict
Monitoring plugin output: status line and exit code.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

PROBE_NAME = "UPDATE"


class Severity(Enum):
    """Plugin status, valued by its exit code."""
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    @property
    def exit_code(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.capitalize() if self is not Severity.OK else "OK"


def perfdata(total: int, security: int) -> str:
    """Performance data with the total and security update counters."""
    return f"'Total Update'={total} 'Security Update'={security}"


@dataclass(frozen=True)
class Verdict:
    """Final result of a run."""
    severity: Severity
    message: str
    total: Optional[int] = None
    security: Optional[int] = None

    @property
    def perfdata(self) -> Optional[str]:
        if self.total is None or self.security is None:
            return None
        return perfdata(self.total, self.security)

    @property
    def exit_code(self) -> int:
        return self.severity.exit_code

    def __str__(self) -> str:
        line = f"{PROBE_NAME} {self.severity.label} - {self.message}"
        if self.perfdata:
            line += f" | {self.perfdata}"
        return line
