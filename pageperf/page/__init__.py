"""
Page sources: where performance entries and page facts come from.

Provides:
- PageSource / Observation / ResourceScope: the observation interface
- ReplayPage: recorded entries driven in-process
- CdpPage / CdpPageRegistry: live Chromium tabs over the DevTools protocol
"""

from .base import ENTRY_EVENT, ENTRY_LAYOUT_SHIFT, ENTRY_PAINT, Observation, PageSource, ResourceScope
from .cdp import CdpPage, CdpPageRegistry
from .replay import ReplayPage

__all__ = [
    "ENTRY_EVENT",
    "ENTRY_LAYOUT_SHIFT",
    "ENTRY_PAINT",
    "CdpPage",
    "CdpPageRegistry",
    "Observation",
    "PageSource",
    "ReplayPage",
    "ResourceScope",
]
