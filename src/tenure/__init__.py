"""Tenure — compliance-gated fractional property tokens and lease escrow."""

__version__ = "0.1.0"
