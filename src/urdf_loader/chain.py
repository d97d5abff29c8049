"""Forward kinematics: link poses for the rendered robot.

Every joint value change is turned into a pose update by walking the
flattened kinematic chain from the root outwards.
"""

from typing import Dict, Optional

import numpy as np

from .core import KinematicChain, KinematicModel
from .transforms import se3


def forward_kinematics(
    chain: KinematicChain, q: np.ndarray, root_transform: Optional[np.ndarray] = None
) -> Dict[str, np.ndarray]:
    """Compute forward kinematics for all links in the robot.

    Args:
        chain: KinematicChain containing the robot's kinematic structure
        q: Joint values array of shape (num_dof,) for actuated joints only
        root_transform: Pose of the root link in the world frame

    Returns:
        Dictionary mapping link names to their 4x4 SE(3) world poses
    """
    world_transforms = forward_kinematics_world(chain, q, root_transform)
    return {name: world_transforms[i] for i, name in enumerate(chain.link_names)}


def forward_kinematics_world(
    chain: KinematicChain, q: np.ndarray, root_transform: Optional[np.ndarray] = None
) -> np.ndarray:
    """FK returning an array of world transforms, one per link.

    Returns:
        Array of shape (num_links, 4, 4) with world poses for all links
    """
    num_links = len(chain.link_names)
    q = np.asarray(q, dtype=float)
    if q.shape != (len(chain.joint_names),):
        raise ValueError(
            f"Expected {len(chain.joint_names)} joint values, got shape {q.shape}"
        )

    # Scatter the actuated values onto their child links
    q_full = np.zeros(num_links)
    q_full[chain.actuated_joint_to_link_idx] = q

    world_transforms = np.repeat(np.eye(4)[None], num_links, axis=0)
    if num_links == 0:
        return world_transforms
    if root_transform is not None:
        world_transforms[0] = root_transform

    # Links are in breadth-first order, so parents are always computed first
    for i in range(1, num_links):
        T_world_to_parent = world_transforms[chain.parent_indices[i]]
        T_joint_motion = se3.exp(chain.joint_axes[i] * q_full[i])
        T_parent_to_child = chain.joint_transforms[i] @ T_joint_motion
        world_transforms[i] = T_world_to_parent @ T_parent_to_child

    return world_transforms


def link_poses(model: KinematicModel) -> Dict[str, np.ndarray]:
    """World poses of every link at the model's current joint values."""
    chain = model.to_chain()
    q = np.array([model.joints[name].value for name in chain.joint_names], dtype=float)
    return forward_kinematics(chain, q, model.root_transform)
