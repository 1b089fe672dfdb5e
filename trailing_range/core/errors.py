"""Error taxonomy for the range and migration core.

Validation and policy errors reach the immediate caller. Policy errors are
retryable later without changing the input. External failures are absorbed
at the adapter boundary and turned into compensating transitions. Invariant
violations signal an integration bug and never mutate state.
"""

from __future__ import annotations

from typing import Any


class TrailingRangeError(Exception):
    code: str = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class ValidationError(TrailingRangeError):
    code = "validation"


class AccessDenied(TrailingRangeError):
    code = "access_denied"


class PolicyError(TrailingRangeError):
    code = "policy"


class SystemPaused(PolicyError):
    code = "paused"

    def __init__(self, operation: str) -> None:
        super().__init__(f"system is paused; {operation} rejected", operation=operation)


class CooldownActive(PolicyError):
    code = "cooldown_active"


class DriftWithinThreshold(PolicyError):
    code = "drift_within_threshold"


class NotProfitable(PolicyError):
    code = "not_profitable"


class ExternalFailure(TrailingRangeError):
    code = "external_failure"


class RebalanceAborted(ExternalFailure):
    code = "rebalance_aborted"


class InvariantViolation(TrailingRangeError):
    code = "invariant_violation"


class InvalidTransition(InvariantViolation):
    code = "invalid_transition"


class DuplicateMigrationId(InvariantViolation):
    code = "duplicate_migration_id"


class ReentrantCall(InvariantViolation):
    code = "reentrant_call"
