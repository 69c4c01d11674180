"""Cavern flight: a scrolling cave, a feature sampler and a small Rprop-trained autopilot."""

__version__ = "0.1.0"
