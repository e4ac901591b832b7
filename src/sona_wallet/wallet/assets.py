"""Whitelisted asset definitions."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sona_wallet.config import AssetConfig


@dataclass(frozen=True)
class Asset:
    """A transferable asset: the native coin or an SPL token."""

    symbol: str
    decimals: int
    mint: str | None = None

    @property
    def is_native(self) -> bool:
        return self.mint is None

    def to_minor(self, amount: Decimal) -> int:
        """Convert a human amount to base units (lamports / token atoms).

        Raises ``ValueError`` if *amount* has more precision than the asset.
        """
        scaled = amount.scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"{amount} {self.symbol} has more than {self.decimals} decimal places"
            )
        return int(scaled)

    def from_minor(self, units: int | str) -> Decimal:
        """Convert base units back to a human amount."""
        return Decimal(int(units)).scaleb(-self.decimals)


class AssetRegistry:
    """The deployment's asset whitelist, keyed by upper-case symbol."""

    def __init__(self, assets: Iterable[Asset]):
        self._assets: dict[str, Asset] = {}
        for asset in assets:
            self._assets[asset.symbol.upper()] = asset
        natives = [a for a in self._assets.values() if a.is_native]
        if len(natives) != 1:
            raise ValueError("Exactly one native asset must be registered.")
        self._native = natives[0]

    @classmethod
    def from_config(cls, configs: Iterable[AssetConfig]) -> AssetRegistry:
        return cls(
            Asset(symbol=c.symbol.upper(), decimals=c.decimals, mint=c.mint)
            for c in configs
        )

    @property
    def native(self) -> Asset:
        return self._native

    def fungible(self) -> list[Asset]:
        return [a for a in self._assets.values() if not a.is_native]

    def get(self, symbol: str) -> Asset:
        """Get an asset by symbol. Raises ``KeyError`` if not whitelisted."""
        key = symbol.upper()
        if key not in self._assets:
            raise KeyError(
                f"Unknown asset '{symbol}'. Available: {self.symbols()}"
            )
        return self._assets[key]

    def by_mint(self, mint: str) -> Asset | None:
        for asset in self._assets.values():
            if asset.mint == mint:
                return asset
        return None

    def symbols(self) -> list[str]:
        return list(self._assets.keys())

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._assets
