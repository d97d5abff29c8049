"""Interactive joint control for the displayed robot."""

import logging

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from .chain import link_poses
from .errors import UnknownJointError
from .pipeline import LoadingPipeline

console_logger = logging.getLogger(__name__)

STEPS_PER_RANGE = 20


@dataclass(frozen=True)
class JointControl:
    """Descriptor of the slider bound to one movable joint."""

    name: str
    min: float
    max: float
    step: float
    initial: float


class JointController:
    """Binds every movable joint of the pipeline's model to a scalar control.

    Args:
        pipeline: Source of the displayed model.
        render: Called after each accepted joint change. Defaults to the
            pipeline's render request.
    """

    def __init__(self, pipeline: LoadingPipeline, render: Optional[Callable[[], None]] = None):
        self.pipeline = pipeline
        self.render = render or pipeline.request_render

    def controls(self) -> List[JointControl]:
        model = self.pipeline.robot_model
        if model is None:
            return []
        controls = []
        for joint in model.movable_joints():
            limit = joint.limit
            controls.append(JointControl(
                name=joint.name,
                min=limit.lower,
                max=limit.upper,
                step=(limit.upper - limit.lower) / STEPS_PER_RANGE,
                initial=joint.value,
            ))
        return controls

    def set_joint_angle(self, name: str, value: float) -> bool:
        """Set a joint value and redraw.

        Returns:
            False, without changing anything or rendering, if there is no
            model or the joint is unknown or fixed.
        """
        model = self.pipeline.robot_model
        if model is None:
            console_logger.warning(f"Ignoring value for joint '{name}': no robot loaded")
            return False
        try:
            accepted = model.set_joint_value(name, value)
        except UnknownJointError:
            console_logger.warning(f"Ignoring value for unknown joint '{name}'")
            return False
        if not accepted:
            console_logger.warning(f"Ignoring value for fixed joint '{name}'")
            return False
        self.render()
        return True

    def link_poses(self) -> Dict[str, np.ndarray]:
        """World pose of every link of the displayed model."""
        model = self.pipeline.robot_model
        if model is None:
            return {}
        return link_poses(model)
