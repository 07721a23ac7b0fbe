"""Pose solvers, tracking rules, local map selection and trajectory export for visual SLAM."""

__version__ = "0.1.0"