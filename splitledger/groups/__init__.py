"""Groups package: group lifecycle and the per-account settings document."""

from splitledger.groups.repository import GroupRepository

__all__ = ["GroupRepository"]
