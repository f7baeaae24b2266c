"""
Instance size ordering.

The ladder turns the provider's offered sizes plus the operator's allow-list
into a cost-ordered sequence with clamped index arithmetic.
"""

from vertiscale.sizing.ladder import SizeInfo, SizeLadder

__all__ = [
    "SizeInfo",
    "SizeLadder",
]
