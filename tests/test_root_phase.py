# tests/test_root_phase.py
import pytest
import numpy as np

from soilroot import root_phase, constants
from soilroot.root_phase import EXPLORER, MASTER, TAP, RootBranch, RootTree3D
from soilroot.geometry import Polyline
from soilroot.soil_index import SpatialSoilIndex


def box_points(half: float, depth: float, pitch: float) -> np.ndarray:
    xs = np.arange(-half, half + 1e-9, pitch)
    zs = np.arange(-depth, 1e-9, pitch)
    return np.array([[x, y, z] for x in xs for y in xs for z in zs])


@pytest.fixture(scope="module")
def dense_index():
    return SpatialSoilIndex(seed=0).build(box_points(2.0, 4.0, 0.25))


@pytest.fixture
def simple_tree():
    tree = RootTree3D(None, [0, 0, 0], unit_len=10.0, phase=12, div_n=6, toggle_explorer=True, seed=1)
    assert tree.grow_root().success
    return tree


def test_branch_interval_is_half_open():
    branch = RootBranch(Polyline.line([0, 0, 0], [1, 0, 0]), 3, 6)
    assert not branch.is_alive(2)
    assert branch.is_alive(3) and branch.is_alive(5)
    assert not branch.is_alive(6)
    assert branch.is_dead(6) and not branch.is_dead(5)


@pytest.mark.parametrize("kwargs", [
    {"phase": 0}, {"phase": 13}, {"unit_len": 0.0}, {"unit_len": -1.0}, {"div_n": 2},
])
def test_invalid_parameters_fail(kwargs):
    params = {"unit_len": 10.0, "phase": 5, "div_n": 6}
    params.update(kwargs)
    result = RootTree3D(None, [0, 0, 0], **params).grow_root()
    assert not result.success
    assert result.message


def test_simplified_tap_root_is_straight_down(simple_tree):
    taps = simple_tree.get_active_at_phase(TAP, 1)
    assert len(taps) == 1
    assert np.allclose(taps[0].start, [0, 0, 0])
    assert np.allclose(taps[0].end, [0, 0, -1.8])
    assert len(simple_tree.get_active_at_phase(TAP, 2)) > 1


def test_masters_appear_from_phase_two(simple_tree):
    assert simple_tree.get_active_at_phase(MASTER, 1) == []
    # div_n core roots plus two side branches each.
    assert len(simple_tree.get_active_at_phase(MASTER, 2)) == 6 * 3


def test_level_one_core_roots_are_horizontal(simple_tree):
    core = [b.curve for b in simple_tree.branches[MASTER][:6]]
    for crv in core:
        assert crv.length == pytest.approx(2.0)
        assert crv.end[2] == pytest.approx(crv.start[2])


def test_explorer_interval_rule(simple_tree):
    explorers = simple_tree.branches[EXPLORER]
    assert explorers
    for b in explorers:
        assert b.start >= 4
        assert b.end <= min(11, b.start + constants.EXPLORER_LIFETIME)


def test_all_explorers_dead_at_last_phase(simple_tree):
    dead = simple_tree.get_dead_at_phase(EXPLORER, 12)
    assert len(dead) == len(simple_tree.branches[EXPLORER])
    assert simple_tree.get_active_at_phase(EXPLORER, 12) == []


def test_phase_ceiling_is_respected(simple_tree):
    for role in root_phase.ROLES:
        for b in simple_tree.branches[role]:
            assert b.end <= constants.PHASE_CEILING


def test_masters_alive_at_last_phase(simple_tree):
    masters = simple_tree.get_active_at_phase(MASTER, constants.MAX_PHASE)
    # Level 1 core roots and their side branches are open-ended.
    assert len(masters) >= 6 * 3
    assert simple_tree.get_dead_at_phase(MASTER, constants.MAX_PHASE)


def test_default_phase_payload_has_masters():
    config = {"root": {"unit_len": 10.0, "div_n": 6}}
    result = root_phase.grow_tree3d_roots(config, None)
    assert result.success
    assert result.payload["tree"].phase == constants.MAX_PHASE
    assert result.payload["master"]


def test_group_by_start_phase(simple_tree):
    grouped = simple_tree.get_by_start_phase(MASTER, 6)
    assert set(grouped) <= set(range(1, 7))
    assert 2 in grouped and 3 in grouped
    assert sum(len(v) for v in grouped.values()) == len(simple_tree.get_active_at_phase(MASTER, 6))


def test_low_phase_skips_rounds():
    tree = RootTree3D(None, [0, 0, 0], unit_len=10.0, phase=2, div_n=6)
    assert tree.grow_root().success
    # Level 1 core + sides, level 2 core, level 3 core; no branching rounds yet.
    assert len(tree.branches[MASTER]) == 18 + 5 + 4
    assert len(tree.branches[TAP]) == 2
    assert tree.branches[EXPLORER] == []


def test_explorers_only_when_toggled():
    tree = RootTree3D(None, [0, 0, 0], unit_len=10.0, phase=12, div_n=6, toggle_explorer=False)
    tree.grow_root()
    assert tree.branches[EXPLORER] == []


def test_explorers_bend_downward(simple_tree):
    for crv in simple_tree.get_dead_at_phase(EXPLORER, 12)[:10]:
        assert crv.end[2] < crv.start[2]


def test_scale_to_radius_hits_target(simple_tree):
    factor = simple_tree.scale_to_radius(5.0)
    assert factor > 0
    assert simple_tree.max_radius() == pytest.approx(5.0, rel=1e-6)


def test_scale_to_radius_ignores_bad_target(simple_tree, caplog):
    before = simple_tree.max_radius()
    assert simple_tree.scale_to_radius(0.0) == 1.0
    assert simple_tree.max_radius() == pytest.approx(before)
    assert "rescale skipped" in caplog.text


def test_neighbour_scaling_shrinks_facing_branches():
    tree = RootTree3D(None, [0, 0, 0], unit_len=10.0, phase=2, div_n=6)
    tree.grow_root()
    toward = tree.branches[MASTER][0].curve
    away = tree.branches[MASTER][3].curve
    assert toward.end[0] == pytest.approx(2.0)

    scaled = tree.apply_neighbour_scaling([[3.0, 0.0, 0.0]])
    assert scaled > 0
    assert tree.branches[MASTER][0].curve.end[0] == pytest.approx(1.2)
    assert tree.branches[MASTER][3].curve.end[0] == pytest.approx(away.end[0])
    assert tree.apply_neighbour_scaling([]) == 0


def test_sparse_soil_reports_insufficient_density(caplog):
    index = SpatialSoilIndex(seed=0).build(box_points(10.0, 50.0, 5.0))
    result = RootTree3D(index, [0, 0, 0], unit_len=10.0, phase=5, div_n=6).grow_root()
    assert not result.success
    assert result.message == constants.INSUFFICIENT_DENSITY_MESSAGE
    assert "density too low" in caplog.text


def test_dense_soil_grows_guided_roots(dense_index):
    tree = RootTree3D(dense_index, [0, 0, 0], unit_len=10.0, phase=4, div_n=6, seed=3)
    result = tree.grow_root()
    assert result.success, result.message
    tap1, tap2 = (b.curve for b in tree.branches[TAP][:2])
    assert tap1.length + tap2.length <= 3.0 * constants.TAP_ROOT_DENSITY_LIMIT
    assert tap2.end[2] < -2.0
    # Horizontal roots keep their vertical slope bounded.
    for b in tree.branches[MASTER][:6]:
        seg = np.diff(b.curve.points, axis=0)
        seg_len = np.linalg.norm(seg, axis=1)
        assert np.all(np.abs(seg[:, 2]) <= constants.HORIZONTAL_MAX_VERTICAL * seg_len + 1e-9)


def test_same_seed_same_guided_roots(dense_index):
    a = RootTree3D(dense_index, [0, 0, 0], unit_len=10.0, phase=3, div_n=4, seed=5)
    b = RootTree3D(dense_index, [0, 0, 0], unit_len=10.0, phase=3, div_n=4, seed=5)
    a.grow_root()
    b.grow_root()
    for ba, bb in zip(a.branches[MASTER], b.branches[MASTER]):
        assert np.allclose(ba.curve.points, bb.curve.points)


def test_grow_tree3d_roots_from_config():
    config = {
        "simulation": {"random_seed": 2},
        "root": {"phase": 8, "unit_len": 10.0, "div_n": 6, "toggle_explorer": True, "target_radius": 5.0},
    }
    result = root_phase.grow_tree3d_roots(config, None)
    assert result.success
    payload = result.payload
    assert payload["master"] and payload["tap"]
    assert payload["tree"].max_radius() == pytest.approx(5.0, rel=1e-6)
    assert len(payload["explorer"]) + len(payload["dead"]) <= len(payload["tree"].branches[EXPLORER])
