"""Tests for URDF parser functionality."""

import math

import numpy as np
import pytest
import trimesh

from lxml import etree

from helpers import FIXTURES, fixture_text
from urdf_loader.core import Box, JointType, KinematicModel, MeshGeometry, Sphere
from urdf_loader.errors import DescriptionError, MalformedXmlError
from urdf_loader.io import DescriptionParser, LoadingManager, MeshResolver, PathRewriter

PREFIX = "http://localhost:8888/"


def make_parser(working_path="/robot", fetcher=None, on_geometry_attached=None):
    rewriter = PathRewriter(PREFIX, working_path)
    resolver = MeshResolver(LoadingManager(fetcher)) if fetcher is not None else None
    return DescriptionParser(rewriter, resolver, on_geometry_attached)


def test_load_panda_urdf():
    """Test loading Panda URDF and verify the model structure."""
    robot = make_parser().parse(fixture_text("panda_arm.urdf"))

    assert isinstance(robot, KinematicModel)
    assert robot.name == "panda"

    # 9 links: panda_link0 through panda_link8, breadth-first from the root
    assert list(robot.links) == [f"panda_link{i}" for i in range(9)]
    assert robot.root_link == "panda_link0"

    # 7 revolute joints plus the fixed flange joint
    assert len(robot.joints) == 8
    assert [j.name for j in robot.movable_joints()] == [f"panda_joint{i}" for i in range(1, 8)]
    assert robot.joints["panda_joint8"].joint_type is JointType.FIXED

    # Joint origins are valid SE(3) matrices
    for joint in robot.joints.values():
        T = joint.origin
        np.testing.assert_allclose(T[3, :], [0, 0, 0, 1], rtol=1e-6, atol=1e-6)
        R = T[:3, :3]
        np.testing.assert_allclose(R @ R.T, np.eye(3), rtol=1e-5, atol=1e-5)


def test_panda_joint_properties():
    robot = make_parser().parse(fixture_text("panda_arm.urdf"))
    joint4 = robot.joints["panda_joint4"]

    assert joint4.parent == "panda_link3"
    assert joint4.child == "panda_link4"
    assert joint4.axis == (0.0, 0.0, 1.0)
    assert joint4.limit.lower == pytest.approx(-3.0718)
    assert joint4.limit.upper == pytest.approx(-0.0698)
    np.testing.assert_allclose(joint4.origin[:3, 3], [0.0825, 0, 0])


def test_panda_chain_structure():
    """The flattened chain keeps the breadth-first order and unit revolute axes."""
    robot = make_parser().parse(fixture_text("panda_arm.urdf"))
    chain = robot.to_chain()

    num_links = len(chain.link_names)
    assert chain.parent_indices.shape == (num_links,)
    assert chain.joint_transforms.shape == (num_links, 4, 4)
    assert chain.joint_axes.shape == (num_links, 6)
    assert chain.parent_indices[0] == 0
    assert np.all(chain.parent_indices[1:] < np.arange(1, num_links))

    # Exactly 7 revolute joints, all pure rotations about unit axes
    nonzero = np.linalg.norm(chain.joint_axes, axis=1) > 1e-6
    assert nonzero.sum() == 7
    for axis in chain.joint_axes[nonzero]:
        assert np.linalg.norm(axis[:3]) < 1e-6
        np.testing.assert_allclose(np.linalg.norm(axis[3:]), 1.0, rtol=1e-5, atol=1e-5)


def test_parse_accepts_bytes_element_and_tree():
    data = (FIXTURES / "panda_arm.urdf").read_bytes()
    parser = make_parser()
    tree = etree.ElementTree(etree.fromstring(data))

    for description in (data, tree, tree.getroot()):
        assert len(parser.parse(description).links) == 9


def test_mesh_references_are_resolved():
    robot = make_parser(working_path="ws").parse(fixture_text("panda_arm.urdf"))
    geometry = robot.links["panda_link3"].visuals[0].geometry

    assert isinstance(geometry, MeshGeometry)
    assert geometry.filename == "package://franka_description/meshes/visual/link3.stl"
    assert geometry.url == PREFIX + "files/ws/franka_description/meshes/visual/link3.stl"


def test_materials_and_primitives():
    """Named global materials color visuals; primitives get nodes right away."""
    robot = make_parser().parse(fixture_text("two_link.urdf"))

    base_visual = robot.links["base_link"].visuals[0]
    assert base_visual.geometry == Box(size=(0.2, 0.2, 0.1))
    assert base_visual.material_name == "blue"
    assert base_visual.rgba == (0.0, 0.0, 0.8, 1.0)
    np.testing.assert_allclose(base_visual.origin[:3, 3], [0, 0, 0.05])
    assert isinstance(base_visual.node, trimesh.Trimesh)
    np.testing.assert_array_equal(base_visual.node.visual.face_colors[0], [0, 0, 204, 255])

    arm_visual = robot.links["arm_link"].visuals[0]
    assert arm_visual.rgba == (1.0, 0.0, 0.0, 1.0)
    assert arm_visual.geometry.scale == (0.001, 0.001, 0.001)
    assert arm_visual.node is None

    assert robot.links["slider_link"].visuals[0].geometry == Sphere(radius=0.05)


def test_zero_limits_become_full_turn():
    robot = make_parser().parse(fixture_text("two_link.urdf"))
    slide = robot.joints["slide"]

    assert slide.joint_type is JointType.PRISMATIC
    assert (slide.limit.lower, slide.limit.upper) == (-math.pi, math.pi)


def test_initial_value_and_default_axis():
    robot = make_parser().parse(
        '<robot name="r"><link name="a"/><link name="b"/><link name="c"/>'
        '<joint name="j1" type="revolute"><parent link="a"/><child link="b"/>'
        '<limit lower="-1" upper="1"/><initial value="5"/></joint>'
        '<joint name="j2" type="continuous"><parent link="b"/><child link="c"/></joint>'
        "</robot>"
    )
    # Initial values are clamped to the limits
    assert robot.joints["j1"].value == 1.0
    assert robot.joints["j1"].axis == (1.0, 0.0, 0.0)
    assert robot.joints["j2"].value == 0.0
    assert (robot.joints["j2"].limit.lower, robot.joints["j2"].limit.upper) == (-math.pi, math.pi)


def test_links_without_joints():
    robot = make_parser().parse('<robot name="single"><link name="base"/></robot>')
    assert list(robot.links) == ["base"]
    assert robot.joints == {}
    assert robot.root_link == "base"


def test_no_links_yields_empty_model():
    robot = make_parser().parse('<robot name="nothing"/>')
    assert robot.is_empty()


def test_floating_and_planar_are_other():
    robot = make_parser().parse(
        '<robot name="r"><link name="world"/><link name="base"/><link name="plate"/>'
        '<joint name="free" type="floating"><parent link="world"/><child link="base"/></joint>'
        '<joint name="table" type="planar"><parent link="base"/><child link="plate"/></joint>'
        "</robot>"
    )
    assert robot.joints["free"].joint_type is JointType.OTHER
    assert robot.joints["table"].joint_type is JointType.OTHER
    assert len(robot.movable_joints()) == 2


@pytest.mark.parametrize(
    "body, message",
    [
        ('<link name="a"/><link name="a"/>', "Duplicate link"),
        ('<link/>', "missing attribute 'name'"),
        (
            '<link name="a"/><link name="b"/>'
            '<joint name="j" type="fixed"><parent link="a"/><child link="b"/></joint>'
            '<joint name="j" type="fixed"><parent link="a"/><child link="b"/></joint>',
            "Duplicate joint",
        ),
        (
            '<link name="a"/><link name="b"/>'
            '<joint name="j" type="hinge"><parent link="a"/><child link="b"/></joint>',
            "Unknown joint type",
        ),
        (
            '<link name="a"/><link name="b"/>'
            '<joint name="j"><parent link="a"/><child link="b"/></joint>',
            "Unknown joint type",
        ),
        (
            '<link name="a"/>'
            '<joint name="j" type="fixed"><parent link="a"/><child link="ghost"/></joint>',
            "undefined link 'ghost'",
        ),
        (
            '<link name="a"/><link name="b"/>'
            '<joint name="j" type="fixed"><parent link="a"/></joint>',
            "has no <child>",
        ),
        ('<link name="a"/><link name="b"/>', "exactly one root link"),
        (
            '<link name="a"/><link name="b"/>'
            '<joint name="j1" type="fixed"><parent link="a"/><child link="b"/></joint>'
            '<joint name="j2" type="fixed"><parent link="b"/><child link="a"/></joint>',
            "cycle",
        ),
        (
            '<link name="root"/><link name="a"/><link name="b"/>'
            '<joint name="j1" type="fixed"><parent link="a"/><child link="b"/></joint>'
            '<joint name="j2" type="fixed"><parent link="b"/><child link="a"/></joint>',
            "cycle",
        ),
        (
            '<link name="a"><visual><origin xyz="0 0"/><geometry><sphere radius="1"/></geometry></visual></link>',
            "Expected 3",
        ),
    ],
)
def test_structural_errors(body, message):
    with pytest.raises(DescriptionError, match=message):
        make_parser().parse(f'<robot name="bad">{body}</robot>')


def test_wrong_root_element():
    with pytest.raises(DescriptionError, match="<robot>"):
        make_parser().parse("<sdf/>")


def test_malformed_text():
    with pytest.raises(MalformedXmlError):
        make_parser().parse("<robot><link name='a'></robot>")


def test_meshes_dispatched_after_validation(fetcher):
    """An invalid document starts no mesh loads."""
    parser = make_parser(fetcher=fetcher)
    with pytest.raises(DescriptionError):
        parser.parse(
            '<robot name="bad"><link name="a"><visual><geometry>'
            '<mesh filename="a.stl"/></geometry></visual></link><link name="b"/></robot>'
        )
    assert parser.mesh_resolver.manager.pending_steps == 0


def test_mesh_attachment(fetcher):
    """Loaded meshes attach to their visual and notify the caller."""
    fetcher.add_fixture(PREFIX + "files/robot/meshes/arm.stl", "arm.stl")
    attached = []
    parser = make_parser(fetcher=fetcher, on_geometry_attached=lambda model, link: attached.append(link))

    robot = parser.parse(fixture_text("two_link.urdf"))
    parser.mesh_resolver.manager.process_pending()

    assert isinstance(robot.links["arm_link"].visuals[0].node, trimesh.Trimesh)
    # scale="0.001 0.001 0.001" on a unit tetrahedron
    np.testing.assert_allclose(robot.links["arm_link"].visuals[0].node.extents, [0.001, 0.001, 0.001])
    assert attached == ["arm_link"]
    # The .xyz cover mesh has no loader
    assert robot.links["arm_link"].visuals[1].node is None
    assert len(robot.warnings) == 1
    assert "arm_cover.xyz" in robot.warnings[0]


def test_superseded_model_is_not_mutated(fetcher):
    fetcher.add_fixture(PREFIX + "files/robot/meshes/arm.stl", "arm.stl")
    attached = []
    parser = make_parser(fetcher=fetcher, on_geometry_attached=lambda model, link: attached.append(link))

    robot = parser.parse(fixture_text("two_link.urdf"))
    robot.supersede()
    parser.mesh_resolver.manager.process_pending()

    assert robot.links["arm_link"].visuals[0].node is None
    assert attached == []
    assert fetcher.requests == []


def test_unscaled_mesh_keeps_its_size(fetcher):
    fetcher.add_fixture(PREFIX + "files/robot/meshes/arm.stl", "arm.stl")
    parser = make_parser(fetcher=fetcher)

    robot = parser.parse(
        '<robot name="r"><link name="base"><visual><geometry>'
        '<mesh filename="meshes/arm.stl"/></geometry></visual></link></robot>'
    )
    parser.mesh_resolver.manager.process_pending()

    np.testing.assert_allclose(robot.links["base"].visuals[0].node.extents, [1.0, 1.0, 1.0])
