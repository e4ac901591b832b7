"""Error taxonomy for the transfer pipeline.

Every stage converts its internal failures into one of these before handing
control back to the conversation orchestrator. ``user_message()`` is the only
text that ever reaches the chat transcript.
"""

from __future__ import annotations

from decimal import Decimal


def format_amount(value: Decimal | None) -> str:
    """Render a decimal without exponent or trailing zeros (``10``, ``2.5``)."""
    if value is None:
        return "0"
    return format(value.normalize(), "f")


class WalletError(Exception):
    """Base class for all pipeline failures."""

    def user_message(self) -> str:
        return "Something went wrong while handling your wallet request. Please try again."


# ---------------------------------------------------------------------------
# Validation (user-correctable)
# ---------------------------------------------------------------------------


class ValidationFailure(WalletError):
    pass


class InvalidRecipient(ValidationFailure):
    def __init__(self, recipient: str):
        super().__init__(f"Invalid recipient address: {recipient!r}")
        self.recipient = recipient

    def user_message(self) -> str:
        return "Invalid recipient address. Please provide a valid Solana address."


class InvalidAmount(ValidationFailure):
    def __init__(self, asset: str, amount: Decimal, decimals: int):
        super().__init__(f"{amount} {asset} exceeds {decimals} decimal places")
        self.asset = asset
        self.amount = amount
        self.decimals = decimals

    def user_message(self) -> str:
        return (
            f"{self.asset} supports at most {self.decimals} decimal places. "
            f"Please adjust the amount."
        )


class InsufficientFunds(ValidationFailure):
    def __init__(self, asset: str, requested: Decimal, available: Decimal | None):
        super().__init__(
            f"Insufficient {asset}: requested {requested}, available {available}"
        )
        self.asset = asset
        self.requested = requested
        self.available = available if available is not None else Decimal(0)

    def user_message(self) -> str:
        return (
            f"Insufficient {self.asset} balance: you have "
            f"{format_amount(self.available)} {self.asset} available."
        )


class WalletNotConnected(ValidationFailure):
    def __init__(self) -> None:
        super().__init__("No wallet connected")

    def user_message(self) -> str:
        return "Please connect your wallet before sending tokens."


# ---------------------------------------------------------------------------
# Signer (terminal, never retried)
# ---------------------------------------------------------------------------


class SignerFailure(WalletError):
    pass


class SignerUnavailable(SignerFailure):
    def user_message(self) -> str:
        return "No wallet signer is available. Install or unlock your wallet and try again."


class UserRejected(SignerFailure):
    def user_message(self) -> str:
        return "Transaction cancelled: the request was rejected in your wallet. No funds were moved."


class SignerError(SignerFailure):
    def user_message(self) -> str:
        return "Your wallet could not sign the transaction. No funds were moved."


# ---------------------------------------------------------------------------
# Network / chain
# ---------------------------------------------------------------------------


class NetworkFailure(WalletError):
    """Transient transport failure talking to the chain RPC endpoint."""

    def user_message(self) -> str:
        return "I couldn't reach the Solana network. Please try again in a moment."


class RpcError(WalletError):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: object = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    def user_message(self) -> str:
        return "The Solana network rejected the request. Please try again."


class BuildError(WalletError):
    """The transaction could not be assembled (account lookup or blockhash)."""

    def user_message(self) -> str:
        return "I couldn't prepare the transaction right now. Please try again in a moment."


class TransactionFailed(WalletError):
    """Submission was rejected or the chain reported the transaction as failed."""

    def __init__(self, message: str, signature: str | None = None):
        super().__init__(message)
        self.signature = signature

    def user_message(self) -> str:
        return "Transaction failed. No funds were moved. Please try again."


class SubmissionUncertain(TransactionFailed):
    """The connection failed while sending; the transaction may still land."""

    def user_message(self) -> str:
        return (
            "I lost contact with the Solana network while sending your transaction, "
            "so its status is unknown. Check the explorer before trying again."
        )
