"""Engine implementations shipped with the package."""

from regime_switch.engines.paper import PaperEngine, PaperExecutionVenue

__all__ = ["PaperEngine", "PaperExecutionVenue"]
