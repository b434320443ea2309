"""Safety checker contract used by the policy engine."""

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel

from .models import FunctionCall, SafetyCheckerConfig


class SafetyCheckDecision(str, Enum):
    """Verdicts a safety checker can return."""

    ALLOW = "allow"
    DENY = "deny"
    ASK_USER = "ask_user"


class SafetyCheckResult(BaseModel):
    """Verdict of one safety checker run."""

    decision: SafetyCheckDecision
    reason: str | None = None

    model_config = {"frozen": True}


class CheckerRunner(ABC):
    """Runs safety checkers on behalf of the policy engine."""

    @abstractmethod
    async def run_checker(
        self, call: FunctionCall, checker: SafetyCheckerConfig
    ) -> SafetyCheckResult:
        """Run ``checker`` against ``call``.

        Raises:
            CheckerError: If the checker could not produce a verdict. The
                policy engine treats this as a denial.
        """
        pass
