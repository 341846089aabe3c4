"""
Static catalogs.

    from dptk.core.data import BASELINE

    BASELINE.version      # "1"
    BASELINE.metrics      # tuple[MetricSpec, ...]
"""

from dptk.core.data.baseline import BASELINE, BASELINE_VERSION, BaselineCatalog

__all__ = ["BASELINE", "BASELINE_VERSION", "BaselineCatalog"]
