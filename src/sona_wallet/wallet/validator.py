"""Balance validator: admit or reject an intent before any chain interaction."""

from __future__ import annotations

import logging

from solders.pubkey import Pubkey

from sona_wallet.errors import InsufficientFunds, InvalidAmount, InvalidRecipient
from sona_wallet.wallet.assets import AssetRegistry
from sona_wallet.wallet.models import Intent, WalletSession

logger = logging.getLogger("sona_wallet.wallet.validator")


def is_valid_address(address: str) -> bool:
    """True if *address* is a well-formed base58 Solana public key."""
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


class BalanceValidator:
    """Checks an :class:`Intent` against the last refreshed snapshot.

    It never refreshes the snapshot itself: the staleness window is bounded
    by the store's refresh interval.
    """

    def __init__(self, assets: AssetRegistry):
        self.assets = assets

    def validate(self, intent: Intent, snapshot: WalletSession) -> None:
        """Return ``None`` if the intent is admissible.

        Raises, in check order, :class:`InvalidRecipient`,
        :class:`InvalidAmount` or :class:`InsufficientFunds`.
        """
        if not is_valid_address(intent.recipient):
            raise InvalidRecipient(intent.recipient)

        asset = self.assets.get(intent.asset)
        try:
            asset.to_minor(intent.amount)
        except ValueError as exc:
            raise InvalidAmount(asset.symbol, intent.amount, asset.decimals) from exc

        available = snapshot.balance_of(asset.symbol)
        if available is None or intent.amount > available:
            logger.info(
                f"Rejected {intent.describe()}: available {available} {asset.symbol}"
            )
            raise InsufficientFunds(asset.symbol, intent.amount, available)
