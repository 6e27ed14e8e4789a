"""Shared type aliases for MontePi."""

from __future__ import annotations

# Worker identifier in [0, size).
Rank = int

# Point-to-point message tag.
Tag = int

# Pre-encoded point-to-point payload.
Payload = bytes
