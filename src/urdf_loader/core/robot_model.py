"""Kinematic model of a parsed robot description.

``KinematicModel`` is the mutable, in-memory robot consumed by the viewer: its
topology is fixed by the parser, while joint values change interactively and
mesh geometry attaches to links as it arrives. ``KinematicChain`` is the
flattened, immutable view of the same tree used for pose computation.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from ..errors import DescriptionError, UnknownJointError


class JointType(Enum):
    """Motion type of a joint."""

    FIXED = "fixed"
    REVOLUTE = "revolute"
    CONTINUOUS = "continuous"
    PRISMATIC = "prismatic"
    OTHER = "other"

    @classmethod
    def from_urdf(cls, type_name: Optional[str]) -> "JointType":
        """Map a URDF ``type`` attribute to a JointType.

        ``floating`` and ``planar`` joints are movable but have no single
        axis, so they are grouped under OTHER.

        Raises:
            DescriptionError: If the type is missing or not a URDF joint type.
        """
        if type_name in ("floating", "planar"):
            return cls.OTHER
        try:
            joint_type = cls(type_name)
        except ValueError:
            raise DescriptionError(f"Unknown joint type: {type_name!r}") from None
        if joint_type is cls.OTHER:
            raise DescriptionError(f"Unknown joint type: {type_name!r}")
        return joint_type

    @property
    def is_movable(self) -> bool:
        return self is not JointType.FIXED


@dataclass(frozen=True)
class JointLimit:
    lower: float
    upper: float

    @classmethod
    def with_default_range(cls, lower: float, upper: float) -> "JointLimit":
        """Limit with unspecified bounds widened to a full turn.

        Exporters write ``lower="0" upper="0"`` when no range is known, which
        would leave the joint unmovable; such limits become ``(-pi, pi)``.
        """
        if lower == 0 and upper == 0:
            return cls(-math.pi, math.pi)
        return cls(lower, upper)


@dataclass(frozen=True)
class MeshGeometry:
    filename: str
    url: str
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)


@dataclass(frozen=True)
class Box:
    size: Tuple[float, float, float]


@dataclass(frozen=True)
class Cylinder:
    radius: float
    length: float


@dataclass(frozen=True)
class Sphere:
    radius: float


Geometry = Union[MeshGeometry, Box, Cylinder, Sphere]


@dataclass(eq=False)
class Visual:
    """A geometry attached to a link, plus its renderable node once loaded."""

    geometry: Geometry
    origin: np.ndarray = field(default_factory=lambda: np.eye(4))
    rgba: Optional[Tuple[float, float, float, float]] = None
    material_name: Optional[str] = None
    node: Any = None


@dataclass(eq=False)
class Link:
    name: str
    visuals: List[Visual] = field(default_factory=list)
    collisions: List[Visual] = field(default_factory=list)


@dataclass(eq=False)
class Joint:
    name: str
    joint_type: JointType
    parent: str
    child: str
    origin: np.ndarray = field(default_factory=lambda: np.eye(4))
    axis: Tuple[float, float, float] = (1.0, 0.0, 0.0)
    limit: Optional[JointLimit] = None
    value: float = 0.0


@dataclass(frozen=True, eq=False)
class KinematicChain:
    """Flattened representation of a robot's kinematic tree.

    Links are indexed in breadth-first order from the root, so a link's
    parent always has a smaller index.

    Attributes:
        link_names: All link names. Index corresponds to link ID.
        joint_names: All non-fixed joint names, in model order.
        parent_indices: Array of shape (num_links,) where parent_indices[i]
                       is the parent link index of link i. Root link parents itself.
        joint_transforms: Array of shape (num_links, 4, 4) containing the
                         transform from each link's parent to the link at rest.
        joint_axes: Array of shape (num_links, 6) containing the twist of
                   each link's joint. [vx,vy,vz,wx,wy,wz] format.
        actuated_joint_to_link_idx: Array of shape (num_dof,) mapping each entry
                   of joint_names to the index of the joint's child link.
    """
    link_names: Tuple[str, ...]
    joint_names: Tuple[str, ...]
    parent_indices: np.ndarray
    joint_transforms: np.ndarray
    joint_axes: np.ndarray
    actuated_joint_to_link_idx: np.ndarray


@dataclass(eq=False)
class KinematicModel:
    """A parsed robot: named links and joints forming a tree.

    ``root_transform`` places the root link in the viewer frame. A model
    replaced by a newer load is marked ``superseded`` so that late mesh
    completions can tell they belong to a stale robot.
    """

    name: str = ""
    links: Dict[str, Link] = field(default_factory=dict)
    joints: Dict[str, Joint] = field(default_factory=dict)
    root_link: Optional[str] = None
    root_transform: np.ndarray = field(default_factory=lambda: np.eye(4))
    warnings: List[str] = field(default_factory=list)
    superseded: bool = False
    _chain: Optional[KinematicChain] = field(default=None, repr=False, compare=False)

    def is_empty(self) -> bool:
        return not self.links and not self.joints

    def movable_joints(self) -> List[Joint]:
        return [j for j in self.joints.values() if j.joint_type.is_movable]

    def joint_values(self) -> Dict[str, float]:
        return {name: joint.value for name, joint in self.joints.items()}

    def set_joint_value(self, name: str, value: float) -> bool:
        """Set the value of a movable joint.

        Revolute and prismatic joints are clamped to their limits.

        Returns:
            True if the joint accepted the value, False for fixed joints.

        Raises:
            UnknownJointError: If no joint has this name.
        """
        joint = self.joints.get(name)
        if joint is None:
            raise UnknownJointError(f"Joint '{name}' not found in robot model '{self.name}'")
        if not joint.joint_type.is_movable:
            return False

        value = float(value)
        if joint.limit is not None and joint.joint_type in (JointType.REVOLUTE, JointType.PRISMATIC):
            value = min(max(value, joint.limit.lower), joint.limit.upper)
        joint.value = value
        return True

    def supersede(self) -> None:
        self.superseded = True

    def to_chain(self) -> KinematicChain:
        """Flatten the tree for pose computation.

        The topology never changes after parsing, so the chain is built once.
        """
        if self._chain is None:
            self._chain = self._build_chain()
        return self._chain

    def _build_chain(self) -> KinematicChain:
        link_names = list(self.links)
        link_map = {name: i for i, name in enumerate(link_names)}
        joint_by_child = {joint.child: joint for joint in self.joints.values()}

        parent_indices = []
        joint_transforms = []
        joint_axes = []
        for i, link_name in enumerate(link_names):
            joint = joint_by_child.get(link_name)
            if joint is None:
                # Root link parents itself and never moves
                parent_indices.append(i)
                joint_transforms.append(np.eye(4))
                joint_axes.append(np.zeros(6))
                continue

            parent_indices.append(link_map[joint.parent])
            joint_transforms.append(joint.origin)

            axis = np.asarray(joint.axis, dtype=float)
            norm = np.linalg.norm(axis)
            if norm > 0:
                axis = axis / norm
            if joint.joint_type in (JointType.REVOLUTE, JointType.CONTINUOUS):
                joint_axes.append(np.concatenate([np.zeros(3), axis]))
            elif joint.joint_type is JointType.PRISMATIC:
                joint_axes.append(np.concatenate([axis, np.zeros(3)]))
            else:
                joint_axes.append(np.zeros(6))

        actuated = [j for j in self.joints.values() if j.joint_type.is_movable]
        return KinematicChain(
            link_names=tuple(link_names),
            joint_names=tuple(j.name for j in actuated),
            parent_indices=np.array(parent_indices, dtype=np.int32),
            joint_transforms=np.stack(joint_transforms) if link_names else np.zeros((0, 4, 4)),
            joint_axes=np.stack(joint_axes) if link_names else np.zeros((0, 6)),
            actuated_joint_to_link_idx=np.array(
                [link_map[j.child] for j in actuated], dtype=np.int32
            ),
        )
