"""
Container entrypoint for a cluster scrape Job.
"""

from __future__ import annotations

from app.market_intel.worker import main

if __name__ == "__main__":
    raise SystemExit(main())
