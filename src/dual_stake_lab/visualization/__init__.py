"""Visualization helpers for DualStakeLab."""

from .visualizer import Visualizer

__all__ = ["Visualizer"]
