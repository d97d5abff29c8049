"""Core robot model data structures.

This module provides the in-memory kinematic model built by the description
parser and the flattened chain used for pose computation.
"""

from .robot_model import (
    Box,
    Cylinder,
    Joint,
    JointLimit,
    JointType,
    KinematicChain,
    KinematicModel,
    Link,
    MeshGeometry,
    Sphere,
    Visual,
)

__all__ = [
    "Box",
    "Cylinder",
    "Joint",
    "JointLimit",
    "JointType",
    "KinematicChain",
    "KinematicModel",
    "Link",
    "MeshGeometry",
    "Sphere",
    "Visual",
]
