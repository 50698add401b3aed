"""Compliance subsystem — transfer authorization gate."""

from tenure.compliance.gate import MINT_SENTINEL, ZERO_ACCOUNT, ComplianceGate

__all__ = ["ComplianceGate", "MINT_SENTINEL", "ZERO_ACCOUNT"]
