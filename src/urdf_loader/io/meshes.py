"""Mesh loading dispatched on file extension.

Each supported format maps to one parser producing a trimesh geometry. A mesh
load is a small state machine whose fetch steps run on the loading manager
queue::

    AWAITING_GEOMETRY -> [AWAITING_MATERIAL ->] DONE

with CANCELLED and FAILED as the other terminal states. OBJ files pass through
AWAITING_MATERIAL when they reference a material library, because the library
name is only known once the OBJ text has been fetched.
"""

import io
import logging
import re

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable, Dict, Optional, Tuple, Union
from urllib.parse import urlsplit

import numpy as np
import trimesh

from trimesh.resolvers import ZipResolver

from ..errors import UnsupportedMeshFormatError
from .loading_manager import LoadingManager

console_logger = logging.getLogger(__name__)

RGBA = Tuple[float, float, float, float]
DEFAULT_RGBA: RGBA = (0.8, 0.8, 0.8, 1.0)

_MTLLIB_PATTERN = re.compile(r"^\s*mtllib\s+(\S.*?)\s*$", re.MULTILINE)


class MeshFormat(Enum):
    STL = "stl"
    COLLADA = "dae"
    OBJ = "obj"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_path(cls, path: str) -> "MeshFormat":
        """Format for a path or URL, from its case-insensitive extension."""
        suffix = PurePosixPath(urlsplit(path).path).suffix.lower().lstrip(".")
        try:
            mesh_format = cls(suffix)
        except ValueError:
            return cls.UNSUPPORTED
        return mesh_format


class MeshLoadState(Enum):
    AWAITING_GEOMETRY = "awaiting_geometry"
    AWAITING_MATERIAL = "awaiting_material"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = (MeshLoadState.DONE, MeshLoadState.CANCELLED, MeshLoadState.FAILED)


@dataclass(eq=False)
class RenderNode:
    """Renderable geometry produced for one mesh reference."""

    url: str
    mesh_format: MeshFormat
    geometry: Union[trimesh.Trimesh, trimesh.Scene]


def _parse_stl(data: bytes, materials: Dict[str, bytes], rgba: RGBA) -> trimesh.Trimesh:
    # STL carries no material, so the surface gets the default shading
    mesh = trimesh.load_mesh(io.BytesIO(data), file_type="stl")
    mesh.visual.face_colors = np.round(np.asarray(rgba) * 255).astype(np.uint8)
    return mesh


def _parse_collada(data: bytes, materials: Dict[str, bytes], rgba: RGBA) -> trimesh.Scene:
    return trimesh.load_scene(io.BytesIO(data), file_type="dae")


def _parse_obj(data: bytes, materials: Dict[str, bytes], rgba: RGBA) -> trimesh.Scene:
    resolver = ZipResolver(dict(materials)) if materials else None
    return trimesh.load_scene(io.BytesIO(data), file_type="obj", resolver=resolver)


MeshParser = Callable[[bytes, Dict[str, bytes], RGBA], Union[trimesh.Trimesh, trimesh.Scene]]

MESH_PARSERS: Dict[MeshFormat, MeshParser] = {
    MeshFormat.STL: _parse_stl,
    MeshFormat.COLLADA: _parse_collada,
    MeshFormat.OBJ: _parse_obj,
}


def parser_for(url: str) -> Tuple[MeshFormat, MeshParser]:
    """Select the parser for a mesh URL.

    Raises:
        UnsupportedMeshFormatError: If the extension has no parser.
    """
    mesh_format = MeshFormat.from_path(url)
    parser = MESH_PARSERS.get(mesh_format)
    if parser is None:
        raise UnsupportedMeshFormatError(
            f"Could not load model at {url}. No loader available"
        )
    return mesh_format, parser


def material_library(obj_data: bytes) -> Optional[str]:
    """Name of the first material library an OBJ file references."""
    match = _MTLLIB_PATTERN.search(obj_data.decode("utf-8", errors="replace"))
    return match.group(1) if match else None


def url_base(url: str) -> str:
    """Directory part of a URL, with a trailing slash."""
    index = url.rfind("/")
    return url[: index + 1] if index >= 0 else "./"


class MeshLoadTask:
    """Loads one mesh URL through its fetch steps.

    Every step checks ``is_current`` before doing any work, so a task whose
    robot was replaced ends as CANCELLED without fetching or calling back.
    """

    def __init__(
        self,
        url: str,
        manager: LoadingManager,
        on_done: Callable[[RenderNode], None],
        on_error: Optional[Callable[[str, str], None]] = None,
        is_current: Optional[Callable[[], bool]] = None,
        rgba: RGBA = DEFAULT_RGBA,
    ):
        self.url = url
        self.mesh_format, self._parser = parser_for(url)
        self.manager = manager
        self.on_done = on_done
        self.on_error = on_error
        self.is_current = is_current or (lambda: True)
        self.rgba = rgba
        self.state = MeshLoadState.AWAITING_GEOMETRY
        self.material_url: Optional[str] = None
        self._material_name: Optional[str] = None
        self._geometry_data: Optional[bytes] = None
        self._materials: Dict[str, bytes] = {}

    def start(self) -> None:
        self.manager.item_start(self.url)
        self.manager.schedule(self.step)

    def step(self) -> None:
        """Run the fetch for the current state and advance."""
        if self.state in TERMINAL_STATES:
            return
        if not self.is_current():
            console_logger.debug(f"Dropping superseded mesh load {self.url}")
            self.state = MeshLoadState.CANCELLED
            self.manager.item_end(self.url)
            return

        try:
            if self.state is MeshLoadState.AWAITING_GEOMETRY:
                self._geometry_data = self.manager.fetch(self.url)
                if self.mesh_format is MeshFormat.OBJ and self._request_material():
                    return
            elif self.state is MeshLoadState.AWAITING_MATERIAL:
                self._fetch_material()
            node = RenderNode(
                url=self.url,
                mesh_format=self.mesh_format,
                geometry=self._parser(self._geometry_data, self._materials, self.rgba),
            )
        except Exception as e:
            # One broken mesh must not abort the rest of the robot
            self._fail(f"Failed to load mesh {self.url}: {e}")
            return

        self.state = MeshLoadState.DONE
        self.on_done(node)
        self.manager.item_end(self.url)

    def _request_material(self) -> bool:
        """Queue the material library fetch if the OBJ references one."""
        name = material_library(self._geometry_data)
        if name is None or name in self._materials:
            return False
        self.material_url = url_base(self.url) + name
        self._material_name = name
        self.state = MeshLoadState.AWAITING_MATERIAL
        self.manager.schedule(self.step)
        return True

    def _fetch_material(self) -> None:
        try:
            self._materials[self._material_name] = self.manager.fetch(self.material_url)
        except Exception as e:
            console_logger.warning(
                f"Material library {self.material_url} unavailable, "
                f"loading {self.url} without materials: {e}"
            )

    def _fail(self, message: str) -> None:
        console_logger.warning(message)
        self.state = MeshLoadState.FAILED
        if self.on_error is not None:
            self.on_error(self.url, message)
        self.manager.item_error(self.url)
        self.manager.item_end(self.url)


class MeshResolver:
    """Produces renderable nodes for mesh URLs."""

    def __init__(self, manager: LoadingManager, rgba: RGBA = DEFAULT_RGBA):
        self.manager = manager
        self.rgba = rgba

    def load(
        self,
        url: str,
        on_done: Callable[[RenderNode], None],
        on_error: Optional[Callable[[str, str], None]] = None,
        is_current: Optional[Callable[[], bool]] = None,
    ) -> Optional[MeshLoadTask]:
        """Start loading ``url``; ``on_done`` receives the node later.

        Returns:
            The queued task, or None if the format is unsupported. In that case
            a warning is logged and ``on_error`` is called immediately.
        """
        try:
            task = MeshLoadTask(url, self.manager, on_done, on_error, is_current, self.rgba)
        except UnsupportedMeshFormatError as e:
            console_logger.warning(str(e))
            if on_error is not None:
                on_error(url, str(e))
            return None
        task.start()
        return task
