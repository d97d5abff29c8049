"""
Rigid body transforms used for joint motion and link poses.

All functions are pure and operate on numpy arrays.
"""

from . import se3

__all__ = [
    "se3",
]
