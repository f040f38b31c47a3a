# tests/test_steering.py
import pytest
import numpy as np

from soilroot import steering
from soilroot.geometry import Plane, signed_vec_angle
from soilroot.steering import ATTRACTOR, REPELLER, EnvProps, EnvRegion


@pytest.fixture
def plane():
    return Plane.world_xy()


def square_curve(cx, cy, half):
    return [[cx - half, cy - half, 0], [cx + half, cy - half, 0], [cx + half, cy + half, 0],
            [cx - half, cy + half, 0], [cx - half, cy - half, 0]]


def test_no_environment_is_identity():
    p, d = np.array([1.0, 2.0, 0.0]), np.array([0.5, -0.5, 0.0])
    assert np.allclose(steering.steer(p, d, None), p + d)
    assert np.allclose(steering.steer(p, d, EnvProps(enabled=False)), p + d)


def test_disabled_environment_ignores_regions(plane):
    env = EnvProps(enabled=False, detect_range=10.0,
                   attractors=[EnvRegion.circle([0, 0, 0], 5.0, plane, ATTRACTOR)])
    assert np.allclose(steering.steer([0, 0, 0], [1, 0, 0], env), [1, 0, 0])


def test_inside_attractor_doubles_step(plane):
    env = EnvProps(enabled=True, detect_range=1.0,
                   attractors=[EnvRegion.circle([0, 0, 0], 5.0, plane, ATTRACTOR)])
    assert np.allclose(steering.steer([0, 0, 0], [1, 0, 0], env), [2, 0, 0])


def test_inside_repeller_shrinks_step(plane):
    env = EnvProps(enabled=True, detect_range=1.0,
                   repellers=[EnvRegion.circle([0, 0, 0], 5.0, plane, REPELLER)])
    assert np.allclose(steering.steer([0, 0, 0], [1, 0, 0], env), [0.3, 0, 0])


def test_region_out_of_range_is_identity(plane):
    env = EnvProps(enabled=True, detect_range=2.0,
                   attractors=[EnvRegion.circle([50, 0, 0], 1.0, plane, ATTRACTOR)])
    assert np.allclose(steering.steer([0, 0, 0], [1, 0, 0], env), [1, 0, 0])


def test_attractor_ahead_lengthens_step(plane):
    env = EnvProps(enabled=True, detect_range=10.0,
                   attractors=[EnvRegion.circle([5, 0, 0], 1.0, plane, ATTRACTOR)])
    assert np.allclose(steering.steer([0, 0, 0], [1, 0, 0], env), [1.5, 0, 0], atol=1e-6)


def test_repeller_ahead_reduces_travelled_distance(plane):
    env = EnvProps(enabled=True, detect_range=10.0,
                   repellers=[EnvRegion.circle([5, 0, 0], 1.0, plane, REPELLER)])
    end = steering.steer([0, 0, 0], [1, 0, 0], env)
    assert np.linalg.norm(end) < 1.0
    assert np.allclose(end, [0.5, 0, 0], atol=1e-6)


def test_facing_cone_brackets_the_region(plane):
    region = EnvRegion.circle([10, 0, 0], 2.0, plane, ATTRACTOR)
    v0, v1 = steering.facing_cone([0, 0, 0], region)
    assert v0[1] < 0 < v1[1]
    half = np.degrees(np.arcsin(2.0 / 10.0))
    assert signed_vec_angle(v0, v1, plane.normal) == pytest.approx(2 * half, abs=1.0)


def test_region_from_open_curve_is_rejected(plane):
    with pytest.raises(ValueError):
        EnvRegion.from_curve([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], plane, ATTRACTOR)


def test_region_from_closed_curve_contains(plane):
    region = EnvRegion.from_curve(square_curve(0, 0, 1), plane, REPELLER)
    assert region.contains([0.2, 0.2, 0])
    assert region.contains([1.0, 0.0, 0])
    assert not region.contains([3.0, 0.0, 0])
    assert region.boundary_distance([3.0, 0.0, 0]) == pytest.approx(2.0)


def test_unknown_region_kind(plane):
    with pytest.raises(ValueError):
        EnvRegion.circle([0, 0, 0], 1.0, plane, "sink")


def test_validate_env_curves():
    ok, _ = steering.validate_env_curves([square_curve(0, 0, 1)], "Attractor")
    assert ok
    ok, msg = steering.validate_env_curves([[[0, 0], [1, 0], [1, 1], [0, 1]]], "Repeller")
    assert not ok
    assert "Repeller curve 0 is not closed" in msg


def test_env_props_from_config(plane):
    config = {"environment": {
        "enabled": True, "detect_range": 4.0,
        "attractors": [square_curve(5, 5, 1)],
        "repellers": [{"center": [0, 0, 0], "radius": 2.0}],
    }}
    result = steering.env_props_from_config(config, plane)
    assert result.success
    env = result.payload["env_props"]
    assert env.enabled and env.detect_range == 4.0
    assert len(env.attractors) == 1 and len(env.repellers) == 1
    assert env.repellers[0].contains([0, 1, 0])


def test_env_props_from_config_rejects_open_curve(plane, caplog):
    config = {"environment": {"enabled": True, "attractors": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}}
    result = steering.env_props_from_config(config, plane)
    assert not result.success
    assert "not closed" in result.message
    assert "not closed" in caplog.text
