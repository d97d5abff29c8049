"""URDF parser for building kinematic models from robot descriptions.

The parser validates the whole document before it produces anything: the
model is only returned, and mesh loads are only started, once every link and
joint is known to form a single tree. Geometry for meshes then attaches to
the model asynchronously through the :class:`MeshResolver`.
"""

import logging

from collections import deque
from functools import partial
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import numpy as np
import trimesh

from lxml import etree

from ..core.robot_model import (
    Box,
    Cylinder,
    Geometry,
    Joint,
    JointLimit,
    JointType,
    KinematicModel,
    Link,
    MeshGeometry,
    Sphere,
    Visual,
)
from ..errors import DescriptionError, MalformedXmlError
from ..transforms import se3
from .meshes import DEFAULT_RGBA, RGBA, MeshResolver, RenderNode
from .paths import PathRewriter

console_logger = logging.getLogger(__name__)

Description = Union[str, bytes, etree._Element, etree._ElementTree]

DEFAULT_AXIS = (1.0, 0.0, 0.0)


class DescriptionParser:
    """Parser for URDF robot descriptions.

    Args:
        rewriter: Turns mesh ``filename`` attributes into fetchable URLs.
        mesh_resolver: Loads mesh geometry. Without one, mesh visuals keep
            ``node=None`` and only the topology is built.
        on_geometry_attached: Called as ``(model, link_name)`` each time a
            mesh node is attached to a link of a current model.
        default_rgba: Color for primitive shapes without a material.
    """

    def __init__(
        self,
        rewriter: PathRewriter,
        mesh_resolver: Optional[MeshResolver] = None,
        on_geometry_attached: Optional[Callable[[KinematicModel, str], None]] = None,
        default_rgba: RGBA = DEFAULT_RGBA,
    ):
        self.rewriter = rewriter
        self.mesh_resolver = mesh_resolver
        self.on_geometry_attached = on_geometry_attached
        self.default_rgba = default_rgba

    def parse(self, description: Description) -> KinematicModel:
        """Build a kinematic model from a URDF document.

        Args:
            description: URDF text, bytes, or an already parsed element or tree.

        Returns:
            The model, links ordered breadth-first from the root. A document
            without links yields an empty model.

        Raises:
            MalformedXmlError: If text input is not well-formed XML.
            DescriptionError: If the document does not describe a valid tree.
        """
        root = self._root_element(description)
        if root.tag != "robot":
            raise DescriptionError(f"Expected <robot> root element, found <{root.tag}>")

        self._global_materials = self._parse_global_materials(root)
        links = self._parse_links(root)
        joints = self._parse_joints(root, links)

        model = KinematicModel(name=root.get("name", ""))
        if not links:
            model.joints = joints
            return model

        root_link, ordered = self._order_links(links, joints)
        model.links = {name: links[name] for name in ordered}
        model.joints = joints
        model.root_link = root_link
        # <initial> values are clamped like interactive ones
        for name, value in self._initial_values.items():
            model.set_joint_value(name, value)

        console_logger.info(
            f"Parsed robot '{model.name}': {len(model.links)} links, "
            f"{len(model.joints)} joints, root '{root_link}'"
        )
        self._dispatch_meshes(model)
        return model

    def _root_element(self, description: Description) -> etree._Element:
        if isinstance(description, etree._ElementTree):
            return description.getroot()
        if isinstance(description, etree._Element):
            return description
        if isinstance(description, str):
            description = description.encode("utf-8")
        try:
            return etree.fromstring(description)
        except etree.XMLSyntaxError as e:
            raise MalformedXmlError(str(e)) from e

    # Topology

    def _order_links(self, links: Dict[str, Link], joints: Dict[str, Joint]) -> Tuple[str, List[str]]:
        """Find the root link and order links breadth-first from it."""
        child_links = {joint.child for joint in joints.values()}
        root_links = [name for name in links if name not in child_links]
        if not root_links:
            raise DescriptionError("No root link found: the joints form a cycle")
        if len(root_links) > 1:
            raise DescriptionError(f"Expected exactly one root link, found: {root_links}")
        root_link = root_links[0]

        children: Dict[str, List[str]] = {name: [] for name in links}
        for joint in joints.values():
            children[joint.parent].append(joint.child)

        ordered = []
        queue = deque([root_link])
        visited: Set[str] = set()
        while queue:
            current_link = queue.popleft()
            if current_link in visited:
                continue
            visited.add(current_link)
            ordered.append(current_link)
            queue.extend(child for child in children[current_link] if child not in visited)

        unreachable = [name for name in links if name not in visited]
        if unreachable:
            raise DescriptionError(f"Links not reachable from root '{root_link}' (cycle): {unreachable}")
        return root_link, ordered

    # Elements

    def _parse_global_materials(self, root: etree._Element) -> Dict[str, RGBA]:
        materials = {}
        for material_elem in root.findall("material"):
            name = self._required(material_elem, "name")
            color_elem = material_elem.find("color")
            if color_elem is not None:
                materials[name] = self._parse_vector(color_elem.get("rgba", "0 0 0 1"), 4)
        return materials

    def _parse_links(self, root: etree._Element) -> Dict[str, Link]:
        links: Dict[str, Link] = {}
        for link_elem in root.findall("link"):
            name = self._required(link_elem, "name")
            if name in links:
                raise DescriptionError(f"Duplicate link name: '{name}'")
            link = Link(name=name)
            for visual_elem in link_elem.findall("visual"):
                visual = self._parse_visual(visual_elem, name)
                if visual is not None:
                    link.visuals.append(visual)
            for collision_elem in link_elem.findall("collision"):
                collision = self._parse_visual(collision_elem, name)
                if collision is not None:
                    link.collisions.append(collision)
            links[name] = link
        return links

    def _parse_joints(self, root: etree._Element, links: Dict[str, Link]) -> Dict[str, Joint]:
        self._initial_values: Dict[str, float] = {}
        joints: Dict[str, Joint] = {}
        parent_of: Dict[str, str] = {}
        for joint_elem in root.findall("joint"):
            name = self._required(joint_elem, "name")
            if name in joints:
                raise DescriptionError(f"Duplicate joint name: '{name}'")
            joint_type = JointType.from_urdf(joint_elem.get("type"))
            parent = self._required_child_link(joint_elem, "parent")
            child = self._required_child_link(joint_elem, "child")

            for link_name in (parent, child):
                if link_name not in links:
                    raise DescriptionError(f"Joint '{name}' references undefined link '{link_name}'")
            if child in parent_of:
                raise DescriptionError(
                    f"Link '{child}' is the child of both '{parent_of[child]}' and '{name}'"
                )
            parent_of[child] = name

            joint = Joint(
                name=name,
                joint_type=joint_type,
                parent=parent,
                child=child,
                origin=self._parse_origin(joint_elem.find("origin")),
            )
            if joint_type.is_movable:
                joint.axis = self._parse_axis(joint_elem.find("axis"))
                joint.limit = self._parse_limit(joint_elem.find("limit"))
                initial_elem = joint_elem.find("initial")
                if initial_elem is not None:
                    self._initial_values[name] = self._parse_float(
                        initial_elem.get("value", "0"), "initial value"
                    )
            joints[name] = joint
        return joints

    def _parse_visual(self, elem: etree._Element, link_name: str) -> Optional[Visual]:
        geometry_elem = elem.find("geometry")
        if geometry_elem is None:
            raise DescriptionError(f"<{elem.tag}> of link '{link_name}' has no <geometry>")
        geometry = self._parse_geometry(geometry_elem, link_name)
        if geometry is None:
            return None

        rgba, material_name = self._parse_material(elem.find("material"))
        return Visual(
            geometry=geometry,
            origin=self._parse_origin(elem.find("origin")),
            rgba=rgba,
            material_name=material_name,
        )

    def _parse_geometry(self, geometry_elem: etree._Element, link_name: str) -> Optional[Geometry]:
        mesh_elem = geometry_elem.find("mesh")
        if mesh_elem is not None:
            filename = self._required(mesh_elem, "filename")
            return MeshGeometry(
                filename=filename,
                url=self.rewriter.resolve(filename),
                scale=self._parse_vector(mesh_elem.get("scale", "1 1 1"), 3),
            )
        box_elem = geometry_elem.find("box")
        if box_elem is not None:
            return Box(size=self._parse_vector(self._required(box_elem, "size"), 3))
        cylinder_elem = geometry_elem.find("cylinder")
        if cylinder_elem is not None:
            return Cylinder(
                radius=self._parse_float(self._required(cylinder_elem, "radius"), "radius"),
                length=self._parse_float(self._required(cylinder_elem, "length"), "length"),
            )
        sphere_elem = geometry_elem.find("sphere")
        if sphere_elem is not None:
            return Sphere(radius=self._parse_float(self._required(sphere_elem, "radius"), "radius"))

        shapes = [child.tag for child in geometry_elem if isinstance(child.tag, str)]
        console_logger.warning(f"Skipping unsupported geometry {shapes} on link '{link_name}'")
        return None

    def _parse_material(self, material_elem: Optional[etree._Element]) -> Tuple[Optional[RGBA], Optional[str]]:
        """Color of a visual, falling back to the named global material."""
        if material_elem is None:
            return None, None
        name = material_elem.get("name")
        color_elem = material_elem.find("color")
        if color_elem is not None:
            return self._parse_vector(color_elem.get("rgba", "0 0 0 1"), 4), name
        return self._global_materials.get(name), name

    def _parse_origin(self, origin_elem: Optional[etree._Element]) -> np.ndarray:
        if origin_elem is None:
            return np.eye(4)
        xyz = self._parse_vector(origin_elem.get("xyz", "0 0 0"), 3)
        rpy = self._parse_vector(origin_elem.get("rpy", "0 0 0"), 3)
        return se3.from_xyz_rpy(xyz, rpy)

    def _parse_axis(self, axis_elem: Optional[etree._Element]) -> Tuple[float, float, float]:
        if axis_elem is None:
            return DEFAULT_AXIS
        return self._parse_vector(axis_elem.get("xyz", "1 0 0"), 3)

    def _parse_limit(self, limit_elem: Optional[etree._Element]) -> JointLimit:
        if limit_elem is None:
            return JointLimit.with_default_range(0.0, 0.0)
        return JointLimit.with_default_range(
            self._parse_float(limit_elem.get("lower", "0"), "lower limit"),
            self._parse_float(limit_elem.get("upper", "0"), "upper limit"),
        )

    # Values

    @staticmethod
    def _required(elem: etree._Element, attribute: str) -> str:
        value = elem.get(attribute)
        if value is None:
            raise DescriptionError(
                f"<{elem.tag}> on line {elem.sourceline} is missing attribute '{attribute}'"
            )
        return value

    def _required_child_link(self, joint_elem: etree._Element, tag: str) -> str:
        child_elem = joint_elem.find(tag)
        if child_elem is None:
            raise DescriptionError(f"Joint '{joint_elem.get('name')}' has no <{tag}>")
        return self._required(child_elem, "link")

    @staticmethod
    def _parse_float(value: str, what: str) -> float:
        try:
            return float(value)
        except ValueError:
            raise DescriptionError(f"Invalid {what}: '{value}'") from None

    @staticmethod
    def _parse_vector(vector: str, length: int) -> Tuple[float, ...]:
        """Parse a space-separated string into a tuple of floats.

        Raises:
            DescriptionError: If the count or any value is invalid.
        """
        parts = vector.strip().split()
        if len(parts) != length:
            raise DescriptionError(f"Expected {length} space-separated values, got {len(parts)}: '{vector}'")
        try:
            return tuple(float(x) for x in parts)
        except ValueError:
            raise DescriptionError(f"Invalid number in '{vector}'") from None

    # Geometry

    def _dispatch_meshes(self, model: KinematicModel) -> None:
        """Build primitive nodes and start mesh loads for every visual."""
        is_current = partial(_is_current, model)
        for link in model.links.values():
            for visual in link.visuals:
                if not isinstance(visual.geometry, MeshGeometry):
                    visual.node = self._primitive_node(visual)
                    continue
                if self.mesh_resolver is None:
                    continue
                self.mesh_resolver.load(
                    visual.geometry.url,
                    on_done=partial(self._attach, model, link.name, visual),
                    on_error=partial(self._record_mesh_error, model),
                    is_current=is_current,
                )

    def _primitive_node(self, visual: Visual) -> trimesh.Trimesh:
        geometry = visual.geometry
        if isinstance(geometry, Box):
            mesh = trimesh.creation.box(extents=geometry.size)
        elif isinstance(geometry, Cylinder):
            mesh = trimesh.creation.cylinder(radius=geometry.radius, height=geometry.length)
        else:
            mesh = trimesh.creation.icosphere(subdivisions=2, radius=geometry.radius)
        rgba = visual.rgba or self.default_rgba
        mesh.visual.face_colors = np.round(np.asarray(rgba) * 255).astype(np.uint8)
        return mesh

    def _attach(self, model: KinematicModel, link_name: str, visual: Visual, node: RenderNode) -> None:
        if model.superseded:
            console_logger.debug(f"Discarding mesh {node.url} for superseded robot '{model.name}'")
            return
        geometry = node.geometry
        scale = visual.geometry.scale
        if scale != (1.0, 1.0, 1.0):
            geometry.apply_scale(scale)
        visual.node = geometry
        if self.on_geometry_attached is not None:
            self.on_geometry_attached(model, link_name)

    @staticmethod
    def _record_mesh_error(model: KinematicModel, url: str, message: str) -> None:
        if not model.superseded:
            model.warnings.append(message)


def _is_current(model: KinematicModel) -> bool:
    return not model.superseded
