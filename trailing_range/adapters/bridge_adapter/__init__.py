"""Bridge Adapter - fee quotes and cross-chain transfers of position funds."""

from .adapter import BridgeAdapter, StaticQuoteBridgeAdapter

__all__ = ["BridgeAdapter", "StaticQuoteBridgeAdapter"]
