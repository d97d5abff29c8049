"""
URDF Loader: loads URDF and XACRO robot descriptions for interactive viewing.

This library turns description text into a kinematic model with mesh
geometry fetched from a hosting file server, and exposes its movable joints
as bounded controls.
"""

# Import core modules
from . import transforms
from . import core
from . import io

from .config import LoaderConfig
from .controller import JointControl, JointController
from .pipeline import DescriptionSource, LoadingPipeline, LoadState

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "DescriptionSource",
    "JointControl",
    "JointController",
    "LoaderConfig",
    "LoadingPipeline",
    "LoadState",
]
