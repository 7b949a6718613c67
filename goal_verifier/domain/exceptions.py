"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class VendorAPIError(DomainException):
    """Wearable vendor API returned an error or is unavailable"""

    pass


class VendorAuthError(VendorAPIError):
    """Wearable vendor rejected our credentials or none are configured"""

    pass


class LedgerError(DomainException):
    """Ledger did not accept the payout claim"""

    pass


class PayoutError(DomainException):
    """Payout could not be executed; the goal stays open and is retried next cycle"""

    def __init__(self, goal_id: str, message: str):
        super().__init__(f"Payout failed for goal {goal_id}: {message}")
        self.goal_id = goal_id


class GoalNotFoundError(DomainException):
    """No goal exists with the requested id"""

    def __init__(self, goal_id: str):
        super().__init__(f"Goal not found: {goal_id}")
        self.goal_id = goal_id


class GoalNotVerifiableError(DomainException):
    """Goal is completed or expired and can no longer be verified"""

    pass


class ConcurrentUpdateError(DomainException):
    """Goal changed between read and write (optimistic version mismatch)"""

    pass


class VerificationCycleError(DomainException):
    """A whole verification cycle had to be aborted"""

    pass
