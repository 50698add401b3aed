#!/usr/bin/env python3
"""Tenure invariant checks against the deployment parameters."""

import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
PARAMS_FILENAME = "tenure_params.json"

REQUIRED_SECTIONS = ("asset_token", "asset", "payment_token", "compliance", "ledger", "lease")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_sections(params: dict, errors: list[str]) -> None:
    for section in REQUIRED_SECTIONS:
        if not isinstance(params.get(section), dict):
            errors.append(f"missing section: {section}")


def check(config_dir: Optional[Path] = None) -> int:
    from tenure.config import TenureConfig

    path = (config_dir or CONFIG_DIR) / PARAMS_FILENAME
    if not path.exists():
        print(f"Invariant check failed: {path} not found")
        return 1
    params = load_json(path)
    errors: list[str] = []
    check_sections(params, errors)

    # value_per_token is integer division.
    asset = params.get("asset", {})
    shares = asset.get("total_shares", 0)
    value = asset.get("total_value", 0)
    if isinstance(shares, int) and shares > 0 and isinstance(value, int) and value % shares:
        errors.append(
            f"asset.total_value {value} is not a multiple of total_shares {shares}"
        )

    if not errors:
        try:
            TenureConfig.from_dict(params)
        except ValueError as exc:
            errors.extend(str(exc).split("; "))

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    print("Invariant checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
