"""
Built-in platform fetchers.
"""

from app.market_intel.platforms.fetchers.spitogatos import SpitogatosFetcher
from app.market_intel.platforms.fetchers.tospitimou import TospitimouFetcher
from app.market_intel.platforms.fetchers.xe_gr import XeGrFetcher

__all__ = ["SpitogatosFetcher", "TospitimouFetcher", "XeGrFetcher"]
