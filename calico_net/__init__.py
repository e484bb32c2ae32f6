"""Calico chart values, network configuration, image vectors, feature gates and controller configuration."""

__version__ = "0.1.0"