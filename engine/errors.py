# engine/errors.py

# Reason codes surfaced to API callers
NOT_FOUND = "not_found"
ALREADY_CLAIMED = "already_claimed"
EXPIRED = "expired"
NOTHING_TO_CLAIM = "nothing_to_claim"
INSUFFICIENT_BALANCE = "insufficient_balance"
INSUFFICIENT_COLLATERAL = "insufficient_collateral"
NOT_ELIGIBLE_YET = "not_eligible_yet"
INVALID_AMOUNT = "invalid_amount"
BELOW_MINIMUM = "below_minimum"
INVALID_LOCK_PERIOD = "invalid_lock_period"
APR_MISMATCH = "apr_mismatch"
UNKNOWN_USER = "unknown_user"


class EconomyError(Exception):
    """A rejected operation. Nothing was mutated."""
    reason = "rejected"

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        if reason:
            self.reason = reason


class ClaimError(EconomyError):
    reason = NOT_FOUND


class StakeError(EconomyError):
    reason = INVALID_AMOUNT


class EligibilityError(EconomyError):
    reason = NOT_ELIGIBLE_YET


class UnknownUserError(EconomyError):
    reason = UNKNOWN_USER


class SupplyExhausted(EconomyError):
    reason = "supply_exhausted"


class StorageUnavailable(Exception):
    """Transient backend failure; callers retry or skip the period."""


class PriceUnavailable(Exception):
    """The price oracle has neither a fresh nor a last-known-good quote."""
