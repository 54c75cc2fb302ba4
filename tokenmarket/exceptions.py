"""Error taxonomy for the reconciliation engine.

ValidationError and InvariantViolation are raised before any remote call.
GatewayError and UploadError abort only the operation that triggered them.
PartialFetchError is collected by the fetch pipeline and never raised out of
a refresh.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base exception for all tokenmarket errors."""

    pass


class ValidationError(MarketError):
    """Raised when command input is missing or malformed."""

    pass


class InvariantViolation(MarketError):
    """Raised when a command would make an illegal local transition."""

    def __init__(self, message: str, token_id: int | None = None) -> None:
        super().__init__(message)
        self.token_id = token_id


class GatewayError(MarketError):
    """Raised when a ledger read or write fails."""

    def __init__(
        self,
        message: str,
        function: str | None = None,
        token_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.function = function
        self.token_id = token_id


class PartialFetchError(MarketError):
    """One asset's field set could not be read during a refresh."""

    def __init__(self, token_id: int, cause: BaseException) -> None:
        super().__init__(f"Failed to fetch token {token_id}: {cause}")
        self.token_id = token_id
        self.cause = cause


class UploadError(MarketError):
    """Raised when the off-chain metadata store rejects or fails an upload."""

    pass
