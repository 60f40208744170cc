from __future__ import annotations

import math

import numpy as np
import pytest

from pyterra.config import PLANET_RADIUS
from pyterra.node import (
    Priority,
    VNode,
    cspace_to_fspace,
    fspace_to_cspace,
    fspace_to_ecef,
    node_outline,
)


def test_priority_ordering() -> None:
    assert Priority.none() < Priority.cutoff()
    assert Priority.from_f64(2.0) > Priority.cutoff()
    assert Priority.from_f64(math.nan) == Priority.none()
    assert Priority.from_f64(-3.0) == Priority.none()
    values = [Priority(3.0), Priority.from_f64(math.nan), Priority(0.5)]
    assert sorted(values) == [Priority.none(), Priority(0.5), Priority(3.0)]


def test_vnode_validation_errors() -> None:
    with pytest.raises(ValueError, match="face out of range"):
        VNode(6, 0, 0, 0)
    with pytest.raises(ValueError, match="level out of range"):
        VNode(0, VNode.LEVEL_CELL_2CM + 1, 0, 0)
    with pytest.raises(ValueError, match="x out of range"):
        VNode(0, 1, 2, 0)
    with pytest.raises(ValueError, match="y out of range"):
        VNode(0, 1, 0, -1)


def test_vnode_is_hashable_value() -> None:
    assert VNode(2, 3, 4, 5) == VNode(2, 3, 4, 5)
    assert len({VNode(2, 3, 4, 5), VNode(2, 3, 4, 5), VNode(2, 3, 5, 4)}) == 2


def test_level_constants_match_cell_sizes() -> None:
    for level, size in [
        (VNode.LEVEL_CELL_10M, 10.0),
        (VNode.LEVEL_CELL_1M, 1.0),
        (VNode.LEVEL_CELL_2CM, 0.02),
    ]:
        assert VNode(0, level, 0, 0).cell_size() <= size
        assert VNode(0, level - 1, 0, 0).cell_size() > size


def test_children_order_and_parent() -> None:
    node = VNode(3, 2, 1, 2)
    children = node.children()
    assert children == (
        VNode(3, 3, 2, 4),
        VNode(3, 3, 3, 4),
        VNode(3, 3, 2, 5),
        VNode(3, 3, 3, 5),
    )
    for child in children:
        assert child.parent() == node
        assert node.is_ancestor_of(child)
    assert VNode(3, 0, 0, 0).parent() is None


def test_children_tile_parent() -> None:
    node = VNode(1, 4, 7, 9)
    u0, v0, u1, v1 = node.fspace_bounds()
    area = sum(
        (b[2] - b[0]) * (b[3] - b[1]) for b in (c.fspace_bounds() for c in node.children())
    )
    assert area == pytest.approx((u1 - u0) * (v1 - v0))
    bounds = np.array([c.fspace_bounds() for c in node.children()])
    assert bounds[:, 0].min() == pytest.approx(u0)
    assert bounds[:, 1].min() == pytest.approx(v0)
    assert bounds[:, 2].max() == pytest.approx(u1)
    assert bounds[:, 3].max() == pytest.approx(v1)


def test_is_ancestor_of() -> None:
    node = VNode(0, 1, 1, 0)
    assert node.is_ancestor_of(VNode(0, 3, 5, 2))
    assert not node.is_ancestor_of(VNode(0, 3, 1, 2))
    assert not node.is_ancestor_of(VNode(1, 3, 5, 2))
    assert not node.is_ancestor_of(node)


@pytest.mark.parametrize("face", range(6))
def test_face_mapping_round_trip(face: int) -> None:
    for u, v in [(0.0, 0.0), (0.5, -0.25), (-0.9, 0.9)]:
        f, fu, fv = cspace_to_fspace(fspace_to_cspace(face, u, v))
        assert f == face
        assert fu == pytest.approx(u)
        assert fv == pytest.approx(v)


def test_from_ecef_inverts_center() -> None:
    for face in range(6):
        for node in [VNode(face, 0, 0, 0), VNode(face, 3, 2, 7), VNode(face, 9, 300, 11)]:
            assert VNode.from_ecef(node.center_ecef(), node.level) == node


def test_neighbors_within_face() -> None:
    assert VNode(0, 2, 1, 1).neighbors() == (
        VNode(0, 2, 0, 1),
        VNode(0, 2, 2, 1),
        VNode(0, 2, 1, 0),
        VNode(0, 2, 1, 2),
    )


def test_neighbors_are_symmetric_across_faces() -> None:
    for face in range(6):
        for x in range(4):
            for y in range(4):
                node = VNode(face, 2, x, y)
                neighbors = node.neighbors()
                assert len(set(neighbors)) == 4
                for neighbor in neighbors:
                    assert neighbor.level == 2
                    assert neighbor != node
                    assert node in neighbor.neighbors()


def test_cross_face_neighbor_shares_edge() -> None:
    node = VNode(0, 1, 1, 0)
    east = node.neighbors()[1]
    assert east.face != node.face
    # Adjacent cells share part of a cube edge, so their centers are close
    gap = np.linalg.norm(east.center_ecef() - node.center_ecef())
    assert gap < 1.2 * node.side_length()


def test_bounds_contain_surface() -> None:
    node = VNode(4, 5, 10, 20)
    lo, hi = node.bounds()
    assert np.all(lo < hi)
    center = node.center_ecef()
    assert np.all(center >= lo) and np.all(center <= hi)
    for point in node_outline(node, steps=4):
        assert np.all(point >= lo - 1e-6) and np.all(point <= hi + 1e-6)


def test_priority_decreases_with_distance() -> None:
    node = VNode(0, 5, 12, 20)
    direction = node.center_ecef() / PLANET_RADIUS
    priorities = [node.priority(direction * PLANET_RADIUS * k) for k in (1.5, 2.0, 3.0, 5.0)]
    assert priorities == sorted(priorities, reverse=True)
    assert len(set(priorities)) == 4


def test_priority_increases_with_size_far_away() -> None:
    camera = np.array([1.0e9, 2.0e8, -3.0e8])
    node = VNode.from_ecef(camera, 6)
    while node.parent() is not None:
        parent = node.parent()
        assert parent.priority(camera) > node.priority(camera)
        node = parent


def test_priority_close_camera() -> None:
    camera = fspace_to_ecef(2, 0.1, 0.1, PLANET_RADIUS + 100.0)
    node = VNode.from_ecef(camera, 10)
    assert node.priority(camera) >= Priority.cutoff()
    assert node.priority(camera) == node.priority(camera.copy())


def test_priority_invalid_camera_is_none() -> None:
    node = VNode(0, 0, 0, 0)
    assert node.priority((math.nan, 0.0, 0.0)) == Priority.none()
    assert node.priority((math.inf, 0.0, 0.0)) == Priority.none()


def test_breadth_first_respects_max_level() -> None:
    visited = []

    def visit(node: VNode) -> bool:
        visited.append(node)
        return True

    VNode.breadth_first(visit, max_level=3)
    assert len(visited) == 6 * (1 + 4 + 16 + 64)
    levels = [node.level for node in visited]
    assert levels == sorted(levels)
    assert max(levels) == 3
    assert len(set(visited)) == len(visited)


def test_breadth_first_terminates_at_finest_level() -> None:
    visited = []

    def visit(node: VNode) -> bool:
        visited.append(node)
        return node.x == 0 and node.y == 0

    VNode.breadth_first(visit)
    assert max(node.level for node in visited) == VNode.LEVEL_CELL_2CM
    assert len(visited) == 6 + 6 * 4 * VNode.LEVEL_CELL_2CM


def test_breadth_first_stops_when_visitor_declines() -> None:
    visited = []
    VNode.breadth_first(lambda node: visited.append(node) or False)
    assert visited == VNode.roots()


def test_node_outline_lies_on_sphere() -> None:
    node = VNode(5, 3, 2, 6)
    points = node_outline(node, steps=5, height=100.0)
    assert points.shape == (20, 3)
    np.testing.assert_allclose(np.linalg.norm(points, axis=1), PLANET_RADIUS + 100.0)
    u0, v0, _, _ = node.fspace_bounds()
    np.testing.assert_allclose(points[0], fspace_to_ecef(5, u0, v0, PLANET_RADIUS + 100.0))


def test_fine_node_below_distant_camera_is_under_cutoff() -> None:
    camera = fspace_to_ecef(0, 0.3, -0.2, PLANET_RADIUS + 1000.0)
    node = VNode.from_ecef(camera, VNode.LEVEL_CELL_2CM)
    expected = (node.side_length() / 1000.0) ** 2
    assert node.priority(camera).value == pytest.approx(expected, rel=1e-6)
    assert node.priority(camera) < Priority.cutoff()

    # Coarse enough to stay above the cutoff from the same height
    coarse = VNode.from_ecef(camera, 13)
    assert coarse.priority(camera) >= Priority.cutoff()


def test_priority_is_the_same_everywhere_on_a_face() -> None:
    for u, v in [(0.0, 0.0), (0.3, -0.2), (-0.85, 0.9)]:
        camera = fspace_to_ecef(4, u, v, PLANET_RADIUS + 500.0)
        node = VNode.from_ecef(camera, 16)
        assert node.priority(camera).value == pytest.approx((node.side_length() / 500.0) ** 2, rel=1e-6)


def test_nearest_surface_point() -> None:
    node = VNode(0, 2, 1, 1)
    u0, v0, u1, v1 = node.fspace_bounds()

    inside = fspace_to_ecef(0, 0.5 * (u0 + u1), 0.5 * (v0 + v1), PLANET_RADIUS + 10.0)
    np.testing.assert_allclose(node.nearest_surface_point(inside), inside * PLANET_RADIUS / (PLANET_RADIUS + 10.0))

    # Beyond the +u edge the nearest point sits on that edge
    outside = fspace_to_ecef(0, 0.9, 0.5 * (v0 + v1), PLANET_RADIUS)
    nearest = node.nearest_surface_point(outside)
    np.testing.assert_allclose(nearest, fspace_to_ecef(0, u1, 0.5 * (v0 + v1)))

    # A point on the opposite side of the planet still lands on the patch
    behind = node.nearest_surface_point((-PLANET_RADIUS, 0.0, 0.0))
    assert np.linalg.norm(behind) == pytest.approx(PLANET_RADIUS)
    face, u, v = cspace_to_fspace(behind)
    assert face == 0 and u0 <= u <= u1 and v0 <= v <= v1


def test_priority_from_planet_center() -> None:
    node = VNode(3, 4, 5, 6)
    assert node.priority((0.0, 0.0, 0.0)).value == pytest.approx((node.side_length() / PLANET_RADIUS) ** 2)


def test_zero_vector_has_no_face() -> None:
    with pytest.raises(ValueError, match="cannot project"):
        cspace_to_fspace((0.0, 0.0, 0.0))
    with pytest.raises(ValueError, match="cannot project"):
        VNode.from_ecef((0.0, 0.0, 0.0), 5)
