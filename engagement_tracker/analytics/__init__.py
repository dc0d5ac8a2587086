"""Counter reconciliation, reclassification and metrics for the tracker."""

from . import frame_bridge, metrics, reclassify, reconcile

__all__ = [
    "frame_bridge",
    "metrics",
    "reclassify",
    "reconcile",
]
