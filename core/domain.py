"""
Domain Layer Base Classes.

The domain layer contains pure business logic with no external dependencies.
This makes business rules:
- Easy to test (no mocking needed)
- Reusable across request handlers and scripts
- Clear and self-documenting

Example Usage:
    class BookingValidator(PolicyEngine):
        def evaluate(self, context: BookingContext) -> PolicyDecision:
            # Pure business logic here
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from datetime import date, datetime, timezone
from enum import Enum


class PolicyResult(Enum):
    """Result of a policy evaluation."""
    APPROVED = "approved"
    DENIED = "denied"


class PreconditionViolation(ValueError):
    """
    Raised when data reaching the domain layer breaks an invariant that
    should have been enforced upstream (malformed times, empty schedule
    windows, out-of-range ratings).
    """


@dataclass
class PolicyDecision:
    """
    The outcome of a policy evaluation.

    Attributes:
        result: The policy decision result
        reason: Human-readable explanation
        code: Machine-readable rejection code (None when approved)
        metadata: Additional context for the decision
    """
    result: PolicyResult
    reason: str
    code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.result == PolicyResult.APPROVED

    @property
    def is_denied(self) -> bool:
        return self.result == PolicyResult.DENIED

    @classmethod
    def approve(cls, reason: str, **metadata: Any) -> "PolicyDecision":
        return cls(result=PolicyResult.APPROVED, reason=reason, metadata=metadata)

    @classmethod
    def deny(cls, code: Union[str, Enum], reason: str, **metadata: Any) -> "PolicyDecision":
        if isinstance(code, Enum):
            code = code.value
        return cls(result=PolicyResult.DENIED, reason=reason, code=code, metadata=metadata)


@dataclass
class DomainEvent:
    """
    Base class for domain events.

    Domain events represent something that happened in the business domain.
    They can be used for:
    - Audit logging
    - Triggering derived-data recomputation (e.g. doctor ratings)
    """
    event_type: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = field(default_factory=dict)


class PolicyEngine(ABC):
    """
    Abstract base class for policy engines.

    A PolicyEngine encapsulates a set of business rules that can be
    evaluated against a context to produce a decision.

    Example:
        class CancellationPolicy(PolicyEngine):
            def evaluate(self, context) -> PolicyDecision:
                if context.status in TERMINAL_STATUSES:
                    return PolicyDecision.deny("already_terminal", "Appointment is closed")
                return PolicyDecision.approve("Appointment can be cancelled")
    """

    @abstractmethod
    def get_policies(self) -> List[str]:
        """Names of the rules this engine checks, in evaluation order."""
        pass

    @abstractmethod
    def evaluate(self, context: Any) -> PolicyDecision:
        """
        Evaluate the policy against the given context.

        Args:
            context: Object containing all data needed for evaluation

        Returns:
            PolicyDecision with the result and explanation
        """
        pass

    def explain(self, context: Any) -> str:
        """
        Provide a human-readable explanation of how the policy would be applied.

        Default implementation returns the reason from evaluate().
        """
        decision = self.evaluate(context)
        return decision.reason


class DomainService(ABC):
    """
    Abstract base class for domain services.

    Domain services contain business logic that doesn't belong to a single entity.

    Key principles:
    - No I/O operations (database, network, file)
    - All dependencies passed as parameters
    - Return domain objects, not DTOs
    """

    @abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """
        Execute the domain service operation.

        Implementation should contain pure business logic only.
        """
        pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def to_calendar_date(value: Union[str, date, datetime]) -> date:
    """
    Reduce a date, datetime or ISO string to its calendar day.

    Datetimes keep their own wall-clock day; no timezone conversion is applied.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise PreconditionViolation("Empty date value")
    text = value.strip()
    try:
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError as e:
        raise PreconditionViolation(f"Malformed date '{value}'") from e
