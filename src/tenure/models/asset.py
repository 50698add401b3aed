"""Asset models — the tokenized property and token metadata.

Amounts are integers in the token's smallest unit. No floats in finance.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    decimals: int

    @property
    def unit(self) -> int:
        """Smallest-unit multiplier for one whole token."""
        return 10 ** self.decimals


@dataclass(frozen=True)
class AssetRecord:
    """The real-world asset backing the ledger.

    ``total_shares`` whole tokens may exist; the issuance cap in smallest
    units is ``total_shares * metadata.unit``.
    """
    property_address: str
    total_value: int
    total_shares: int
    description: str = ""
    is_active: bool = True

    def value_per_token(self) -> int:
        return self.total_value // self.total_shares
