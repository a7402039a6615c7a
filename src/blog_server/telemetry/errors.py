from __future__ import annotations


class CostFetchError(Exception):
    """The cost source could not produce data for a window."""


class TransientCostFetchError(CostFetchError):
    """A cost fetch failed in a way that is worth retrying (network, throttling)."""
