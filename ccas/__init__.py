"""
Construction Cost Allocation System.

Allocation of vendor expenses to estimate and change order line items,
project financial rollups and a report executor over the same store.
"""

__version__ = "0.1.0"
