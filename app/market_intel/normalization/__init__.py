"""
Listing normalization exports.
"""

from app.market_intel.normalization.listing_normalizer import (
    ListingNormalizer,
    canonical_source_id,
    parse_int,
    parse_price,
    parse_size,
)

__all__ = ["ListingNormalizer", "canonical_source_id", "parse_int", "parse_price", "parse_size"]
