from __future__ import annotations


class ArenaError(Exception):
    """
    Base for every failure the ledger and membership services report to callers.

    `reason` is a stable machine-readable code, `status_code` the HTTP status the API
    renders it with, and `meta` any structured detail the client needs for a specific message.
    """

    reason = "ARENA_ERROR"
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, meta: dict | None = None):
        self.message = message or self.default_message
        self.meta = dict(meta or {})
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {"ok": False, "error": self.message, "reason": self.reason}
        payload.update(self.meta)
        return payload


class InvalidRequest(ArenaError):
    reason = "INVALID_REQUEST"
    default_message = "Invalid request."


class QuoteUnavailableError(ArenaError):
    reason = "QUOTE_UNAVAILABLE"
    status_code = 503
    default_message = "Could not get a quote for this symbol. Please try again."


class InsufficientFunds(ArenaError):
    reason = "INSUFFICIENT_CASH"
    default_message = "Insufficient funds."


class InsufficientShares(ArenaError):
    reason = "INSUFFICIENT_SHARES"
    default_message = "Insufficient shares."


class NoSuchHolding(ArenaError):
    reason = "NO_POSITION"
    default_message = "You do not own this stock."


class AlreadyMember(ArenaError):
    reason = "ALREADY_MEMBER"
    status_code = 409
    default_message = "You are already a member of this league."


class NotAMember(ArenaError):
    reason = "NOT_A_MEMBER"
    status_code = 403
    default_message = "You are not a member of this league."


class LeagueNotFound(ArenaError):
    reason = "LEAGUE_NOT_FOUND"
    status_code = 404
    default_message = "League not found."


class InvalidCode(LeagueNotFound):
    reason = "INVALID_CODE"
    default_message = "No league matches this invitation code."


class NotLeagueAdmin(ArenaError):
    reason = "NOT_LEAGUE_ADMIN"
    status_code = 403
    default_message = "Only the league admin can do this."


class StoreTransactionFailure(ArenaError):
    """The atomic commit failed; nothing was written and the caller may retry."""

    reason = "STORE_TRANSACTION_FAILED"
    status_code = 503
    default_message = "The operation could not be saved. Please try again."

    def __init__(self, message: str | None = None, *, meta: dict | None = None):
        meta = {"retryable": True, **(meta or {})}
        super().__init__(message, meta=meta)


class AccountExists(ArenaError):
    reason = "USER_EXISTS"
    default_message = "User already exists."


class InvalidCredentials(ArenaError):
    reason = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid credentials."


class EmailNotVerified(ArenaError):
    reason = "EMAIL_NOT_VERIFIED"
    status_code = 401
    default_message = "Please verify your email before logging in."
