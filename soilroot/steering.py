# soilroot/steering.py
from __future__ import annotations

import numpy as np
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from shapely.geometry import Point, Polygon

from soilroot import utils, constants, config_manager
from soilroot.data_structures import GrowthResult
from soilroot.geometry import Plane, Polyline, rotate_vector, signed_vec_angle, to_radian

logger = logging.getLogger(__name__)

ATTRACTOR = "attractor"
REPELLER = "repeller"

# Distance to a region outline that still counts as "on" the region.
CONTAINMENT_TOLERANCE = 0.01


def is_closed_curve(points: Sequence, tol: float = 1e-6) -> bool:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[0] < 4:
        return False
    return utils.distance(utils.as_point(pts[0]), utils.as_point(pts[-1])) <= tol


class EnvRegion:
    """
    Attractor or repeller area, held as a shapely Polygon in the plane's (u, v) coordinates.
    """

    def __init__(self, polygon: Polygon, plane: Plane, kind: str):
        if kind not in (ATTRACTOR, REPELLER):
            raise ValueError(f"Unknown region kind '{kind}'.")
        if polygon.is_empty or polygon.area <= 0:
            raise ValueError("Environment region must enclose a non-zero area.")
        self.polygon: Polygon = polygon
        self.plane: Plane = plane
        self.kind: str = kind

    @classmethod
    def from_curve(cls, points: Sequence, plane: Plane, kind: str) -> "EnvRegion":
        if isinstance(points, Polyline):
            points = points.points
        if not is_closed_curve(points):
            raise ValueError("Environment region curve must be closed.")
        uv = plane.closest_parameters(np.array([utils.as_point(p) for p in points]))
        return cls(Polygon(uv), plane, kind)

    @classmethod
    def circle(cls, center, radius: float, plane: Plane, kind: str, resolution: int = 32) -> "EnvRegion":
        u, v = plane.closest_parameter(center)
        return cls(Point(u, v).buffer(radius, resolution), plane, kind)

    @property
    def is_attractor(self) -> bool:
        return self.kind == ATTRACTOR

    def _uv(self, p) -> Point:
        return Point(*self.plane.closest_parameter(p))

    def contains(self, p) -> bool:
        """Inside or on the outline (within CONTAINMENT_TOLERANCE)."""
        q = self._uv(p)
        return self.polygon.covers(q) or self.polygon.exterior.distance(q) <= CONTAINMENT_TOLERANCE

    def boundary_distance(self, p) -> float:
        return float(self.polygon.exterior.distance(self._uv(p)))

    def boundary_samples(self, count: int = constants.ENV_BOUNDARY_SAMPLES) -> np.ndarray:
        ring = self.polygon.exterior
        samples = []
        for i in range(count):
            q = ring.interpolate(i / count, normalized=True)
            samples.append(self.plane.point_at(q.x, q.y))
        return np.array(samples)

    def outline(self) -> Polyline:
        coords = np.asarray(self.polygon.exterior.coords)
        return Polyline([self.plane.point_at(u, v) for u, v in coords])


@dataclass
class EnvProps:
    enabled: bool = False
    detect_range: float = 0.0
    attractors: List[EnvRegion] = field(default_factory=list)
    repellers: List[EnvRegion] = field(default_factory=list)


def validate_env_curves(curves: Sequence[Sequence], label: str) -> Tuple[bool, str]:
    for i, crv in enumerate(curves or []):
        pts = crv.points if isinstance(crv, Polyline) else crv
        if not is_closed_curve(pts):
            return False, f"{label} curve {i} is not closed."
    return True, ""


def facing_cone(point, region: EnvRegion, samples: int = constants.ENV_BOUNDARY_SAMPLES) -> Tuple[np.ndarray, np.ndarray]:
    """
    The two unit vectors, seen from point, that bound the wedge a region subtends.

    Boundary samples are ranked by their signed angle to the centroid direction; v0 is
    the most clockwise sample, v1 the most counter-clockwise (about the plane normal).
    """
    pt = utils.as_point(point)
    normal = region.plane.normal
    pts = region.boundary_samples(samples)
    ref_vec = pts.mean(axis=0) - pt

    ranked = {}
    for p in pts:
        key = signed_vec_angle(ref_vec, p - pt, normal)
        if key not in ranked:
            ranked[key] = p
    ordered = sorted(ranked)
    v0 = utils.normalize_vector(ranked[ordered[0]] - pt)
    v1 = utils.normalize_vector(ranked[ordered[-1]] - pt)
    return v0, v1


def _region_candidate(pt: np.ndarray, direction: np.ndarray, region: EnvRegion,
                      dist: float, detect_range: float) -> np.ndarray:
    normal = region.plane.normal
    v0, v1 = facing_cone(pt, region)
    v0_enlarge = rotate_vector(v0, to_radian(-constants.ENV_CONE_ENLARGE_DEG), normal)
    v1_enlarge = rotate_vector(v1, to_radian(constants.ENV_CONE_ENLARGE_DEG), normal)

    ang0 = signed_vec_angle(direction, v0, normal)
    ang0_rot = signed_vec_angle(direction, v0_enlarge, normal)
    ang1 = signed_vec_angle(direction, v1, normal)
    ang1_rot = signed_vec_angle(direction, v1_enlarge, normal)

    k = detect_range * detect_range
    ratio = k / max(dist * dist, constants.EPSILON)
    if region.is_attractor:
        force = min(ratio, constants.ENV_ATTRACTOR_FORCE_MAX)
    else:
        force = min(ratio, constants.ENV_REPELLER_FORCE_MAX)

    new_dir = direction.copy()
    if ang0 * ang0_rot < 0 and abs(ang0) < 90 and abs(ang0_rot) < 90:
        rot = -ang0_rot if region.is_attractor else ang0_rot
        new_dir = rotate_vector(new_dir, to_radian(rot), normal) * force
    elif ang1 * ang1_rot < 0 and abs(ang1) < 90 and abs(ang1_rot) < 90:
        rot = -ang1_rot if region.is_attractor else ang1_rot
        new_dir = rotate_vector(new_dir, to_radian(rot), normal) * force
    elif ang0 * ang1 < 0 and abs(ang0) < 90 and abs(ang1) < 90:
        new_dir = new_dir * force
    return pt + new_dir


def steer(point, direction, env: Optional[EnvProps]) -> np.ndarray:
    """
    Endpoint of one growth step from point along direction under environmental influence.

    Inside an attractor the step is doubled, inside a repeller it shrinks to 0.3.
    Otherwise every region within detect range yields one candidate endpoint (rotated
    and/or scaled by its facing cone) and the candidates are averaged.
    """
    pt = utils.as_point(point)
    d = utils.as_point(direction)
    if env is None or not env.enabled:
        return pt + d

    for region in env.attractors:
        if region.contains(pt):
            return pt + d * constants.ENV_INSIDE_ATTRACTOR_SCALE
    for region in env.repellers:
        if region.contains(pt):
            return pt + d * constants.ENV_INSIDE_REPELLER_SCALE

    nearby = []
    for region in list(env.attractors) + list(env.repellers):
        dist = region.boundary_distance(pt)
        if dist < env.detect_range:
            nearby.append((dist, region))
    if not nearby:
        return pt + d

    nearby.sort(key=lambda item: item[0])
    candidates = [_region_candidate(pt, d, region, dist, env.detect_range) for dist, region in nearby]
    return np.mean(candidates, axis=0)


def _region_from_entry(entry, plane: Plane, kind: str) -> EnvRegion:
    if isinstance(entry, dict):
        return EnvRegion.circle(entry["center"], float(entry["radius"]), plane, kind)
    return EnvRegion.from_curve(entry, plane, kind)


def env_props_from_config(config: dict, plane: Plane) -> GrowthResult:
    """
    Reads the `environment` section. Regions are closed point lists or {center, radius}
    circles. An open curve gives a failed GrowthResult; the payload holds 'env_props'.
    """
    enabled = bool(config_manager.get_param(config, "environment.enabled", False))
    detect_range = float(config_manager.get_param(config, "environment.detect_range", 0.0) or 0.0)
    attractors = config_manager.get_param(config, "environment.attractors", []) or []
    repellers = config_manager.get_param(config, "environment.repellers", []) or []

    for label, entries in (("Attractor", attractors), ("Repeller", repellers)):
        curves = [e for e in entries if not isinstance(e, dict)]
        ok, msg = validate_env_curves(curves, label)
        if not ok:
            return GrowthResult.failure(msg)

    env = EnvProps(
        enabled=enabled,
        detect_range=detect_range,
        attractors=[_region_from_entry(e, plane, ATTRACTOR) for e in attractors],
        repellers=[_region_from_entry(e, plane, REPELLER) for e in repellers],
    )
    if enabled:
        logger.info(f"Environment enabled: {len(env.attractors)} attractors, {len(env.repellers)} repellers, "
                    f"detect range {detect_range}.")
    return GrowthResult(True, "ok", {"env_props": env})
