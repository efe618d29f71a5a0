"""Load-generation and verification harness for a primary/replica computer API.

Phased worker populations drive write, keyset-pagination, search, delete and
consistency-probe traffic against the target service, aggregate latency and
correctness signals, and evaluate pass/fail thresholds at the end of a run.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
