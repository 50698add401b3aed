"""Runtime configuration — token metadata, asset record, caps and widths.

Parameters live in ``config/tenure_params.json``. A handful of operational
caps can be overridden from the environment (or a ``.env`` file):

    TENURE_HOLDER_CAP
    TENURE_MAX_BALANCE_PER_INVESTOR
    TENURE_MAX_BATCH_SIZE
    TENURE_AMOUNT_BITS

``amount_bits`` bounds every amount (balances, rent, deposits) to a
fixed unsigned field width.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from dotenv import load_dotenv

from tenure.errors import InvalidArgument
from tenure.models.asset import AssetRecord, TokenMetadata


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
PARAMS_FILENAME = "tenure_params.json"

MAX_BATCH_SIZE_LIMIT = 100

_ENV_OVERRIDES = {
    "TENURE_HOLDER_CAP": "holder_cap",
    "TENURE_MAX_BALANCE_PER_INVESTOR": "max_balance_per_investor",
    "TENURE_MAX_BATCH_SIZE": "max_batch_size",
    "TENURE_AMOUNT_BITS": "amount_bits",
}


def _default_asset() -> AssetRecord:
    return AssetRecord(
        property_address="123 Blockchain Street, Crypto City, CC 12345",
        total_value=1_000_000 * 10 ** 18,
        total_shares=1_000_000,
        description="Luxury residential property tokenized for fractional ownership",
    )


@dataclass(frozen=True)
class TenureConfig:
    """Validated configuration for one deployment."""
    ledger_account: str = "LPT"
    asset_token: TokenMetadata = TokenMetadata("Luxury Property Token", "LPT", 18)
    asset: AssetRecord = field(default_factory=_default_asset)
    payment_token: TokenMetadata = TokenMetadata("Mock USDC", "USDC", 6)
    holder_cap: int = 0
    max_balance_per_investor: int = 0
    restricted_jurisdictions: Tuple[int, ...] = ()
    max_batch_size: int = MAX_BATCH_SIZE_LIMIT
    amount_bits: int = 256
    escrow_account: str = "lease-escrow"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TenureConfig:
        token = data.get("asset_token", {})
        asset = data.get("asset", {})
        payment = data.get("payment_token", {})
        compliance = data.get("compliance", {})
        ledger = data.get("ledger", {})
        lease = data.get("lease", {})
        defaults = cls()

        try:
            config = cls(
                ledger_account=token.get("account", token.get("symbol", defaults.ledger_account)),
                asset_token=TokenMetadata(
                    name=token.get("name", defaults.asset_token.name),
                    symbol=token.get("symbol", defaults.asset_token.symbol),
                    decimals=int(token.get("decimals", defaults.asset_token.decimals)),
                ),
                asset=AssetRecord(
                    property_address=asset.get("property_address", defaults.asset.property_address),
                    total_value=int(asset.get("total_value", defaults.asset.total_value)),
                    total_shares=int(asset.get("total_shares", defaults.asset.total_shares)),
                    description=asset.get("description", defaults.asset.description),
                    is_active=bool(asset.get("is_active", True)),
                ),
                payment_token=TokenMetadata(
                    name=payment.get("name", defaults.payment_token.name),
                    symbol=payment.get("symbol", defaults.payment_token.symbol),
                    decimals=int(payment.get("decimals", defaults.payment_token.decimals)),
                ),
                holder_cap=int(compliance.get("holder_cap", 0)),
                max_balance_per_investor=int(compliance.get("max_balance_per_investor", 0)),
                restricted_jurisdictions=tuple(
                    int(c) for c in compliance.get("restricted_jurisdictions", [])
                ),
                max_batch_size=int(ledger.get("max_batch_size", MAX_BATCH_SIZE_LIMIT)),
                amount_bits=int(ledger.get("amount_bits", 256)),
                escrow_account=lease.get("escrow_account", defaults.escrow_account),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidArgument(f"Malformed configuration: {exc}") from exc
        config.raise_for_errors()
        return config

    @classmethod
    def from_file(cls, path: Path) -> TenureConfig:
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> TenureConfig:
        return cls.from_file(config_dir / PARAMS_FILENAME)

    @classmethod
    def load(
        cls,
        config_dir: Optional[Path] = None,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> TenureConfig:
        """Load the params file, then apply environment overrides.

        ``.env`` values never clobber variables already set in the process
        environment.
        """
        load_dotenv(env_file)
        config_dir = config_dir or DEFAULT_CONFIG_DIR
        params = config_dir / PARAMS_FILENAME
        config = cls.from_file(params) if params.exists() else cls()
        return config.with_overrides(os.environ if environ is None else environ)

    def with_overrides(self, environ: Mapping[str, str]) -> TenureConfig:
        changes = {}
        for env_name, attr in _ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                changes[attr] = int(raw)
            except ValueError as exc:
                raise InvalidArgument(f"{env_name} must be an integer, got {raw!r}") from exc
        if not changes:
            return self
        config = replace(self, **changes)
        config.raise_for_errors()
        return config

    def validate(self) -> list[str]:
        """Return invariant violations (empty = OK)."""
        errors: list[str] = []
        if not self.ledger_account:
            errors.append("asset_token.account must be non-empty")
        if not self.escrow_account:
            errors.append("lease.escrow_account must be non-empty")
        if self.escrow_account == self.ledger_account:
            errors.append("lease.escrow_account must differ from asset_token.account")
        for label, meta in (("asset_token", self.asset_token), ("payment_token", self.payment_token)):
            if not meta.symbol:
                errors.append(f"{label}.symbol must be non-empty")
            if not 0 <= meta.decimals <= 36:
                errors.append(f"{label}.decimals must be in [0, 36]")
        if self.asset.total_shares <= 0:
            errors.append("asset.total_shares must be positive")
        if self.asset.total_value < 0:
            errors.append("asset.total_value must be non-negative")
        if self.holder_cap < 0:
            errors.append("compliance.holder_cap must be >= 0 (0 = unlimited)")
        if self.max_balance_per_investor < 0:
            errors.append("compliance.max_balance_per_investor must be >= 0 (0 = unlimited)")
        if any(code <= 0 for code in self.restricted_jurisdictions):
            errors.append("compliance.restricted_jurisdictions must be positive codes")
        if not 1 <= self.max_batch_size <= MAX_BATCH_SIZE_LIMIT:
            errors.append(f"ledger.max_batch_size must be in [1, {MAX_BATCH_SIZE_LIMIT}]")
        if not 8 <= self.amount_bits <= 256:
            errors.append("ledger.amount_bits must be in [8, 256]")
        elif self.asset.total_shares * self.asset_token.unit >= 2 ** self.amount_bits:
            errors.append("issuance cap does not fit ledger.amount_bits")
        return errors

    def raise_for_errors(self) -> None:
        errors = self.validate()
        if errors:
            raise InvalidArgument("; ".join(errors))

    def summary(self) -> dict[str, Any]:
        return {
            "ledger_account": self.ledger_account,
            "asset_token": {
                "name": self.asset_token.name,
                "symbol": self.asset_token.symbol,
                "decimals": self.asset_token.decimals,
            },
            "asset": {
                "property_address": self.asset.property_address,
                "total_value": str(self.asset.total_value),
                "total_shares": self.asset.total_shares,
                "is_active": self.asset.is_active,
            },
            "payment_token": {
                "name": self.payment_token.name,
                "symbol": self.payment_token.symbol,
                "decimals": self.payment_token.decimals,
            },
            "holder_cap": self.holder_cap,
            "max_balance_per_investor": self.max_balance_per_investor,
            "restricted_jurisdictions": list(self.restricted_jurisdictions),
            "max_batch_size": self.max_batch_size,
            "amount_bits": self.amount_bits,
            "escrow_account": self.escrow_account,
        }
