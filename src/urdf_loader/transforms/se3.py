"""SE(3) rigid body transforms with numpy.

Transforms are 4x4 homogeneous matrices; joint motions are 6D twists
``[vx, vy, vz, wx, wy, wz]`` scaled by the joint value.
"""

from typing import Sequence

import numpy as np


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix of a 3D vector."""
    x, y, z = v
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ])


def rotation_about_axis(axis_angle: np.ndarray) -> np.ndarray:
    """Rodrigues' formula: axis-angle vector to 3x3 rotation matrix.

    Args:
        axis_angle: (3,) vector whose norm is the rotation angle in radians.

    Returns:
        3x3 rotation matrix. The identity for a zero vector.
    """
    angle = np.linalg.norm(axis_angle)
    if angle < 1e-12:
        return np.eye(3)
    K = skew_symmetric(axis_angle / angle)
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def rpy_to_rotation_matrix(rpy: Sequence[float]) -> np.ndarray:
    """Convert URDF roll-pitch-yaw angles to a rotation matrix.

    URDF applies roll about X, then pitch about Y, then yaw about Z, all in
    the fixed frame: ``R = Rz(yaw) @ Ry(pitch) @ Rx(roll)``.
    """
    roll, pitch, yaw = rpy
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    R_x = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])
    R_y = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
    R_z = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])

    return R_z @ R_y @ R_x


def from_position_and_rotation(p: Sequence[float], R: np.ndarray) -> np.ndarray:
    """Build a 4x4 transform from a position and a 3x3 rotation."""
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = p
    return T


def from_xyz_rpy(xyz: Sequence[float], rpy: Sequence[float]) -> np.ndarray:
    """Transform described by a URDF ``<origin xyz=... rpy=...>``."""
    return from_position_and_rotation(xyz, rpy_to_rotation_matrix(rpy))


def rotation_x(angle: float) -> np.ndarray:
    """Pure rotation about the X axis as a 4x4 transform."""
    return from_position_and_rotation(
        np.zeros(3), rotation_about_axis(np.array([angle, 0.0, 0.0]))
    )


def exp(twist: np.ndarray) -> np.ndarray:
    """SE(3) exponential map of a twist.

    Joint twists are either pure rotations or pure translations, but the
    general closed form is used so any twist is handled.

    Args:
        twist: (6,) array ``[v, w]``.

    Returns:
        4x4 transform.
    """
    v, w = twist[:3], twist[3:]
    angle = np.linalg.norm(w)
    R = rotation_about_axis(w)
    if angle < 1e-12:
        return from_position_and_rotation(v, R)

    K = skew_symmetric(w)
    A = (1.0 - np.cos(angle)) / angle**2
    B = (angle - np.sin(angle)) / angle**3
    V = np.eye(3) + A * K + B * (K @ K)
    return from_position_and_rotation(V @ v, R)
