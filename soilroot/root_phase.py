# soilroot/root_phase.py
from __future__ import annotations

import numpy as np
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from soilroot import utils, constants, config_manager
from soilroot.data_structures import GrowthResult
from soilroot.geometry import Plane, Polyline, rotate_vector
from soilroot.soil_index import SpatialSoilIndex

logger = logging.getLogger(__name__)

MASTER = "master"
TAP = "tap"
EXPLORER = "explorer"
ROLES = (MASTER, TAP, EXPLORER)


@dataclass
class RootBranch:
    """A grown curve with its half-open phase interval [start, end)."""
    curve: Polyline
    start: int
    end: int

    def is_alive(self, phase: int) -> bool:
        return self.start <= phase < self.end

    def is_dead(self, phase: int) -> bool:
        return phase >= self.end


class RootTree3D:
    """
    Phase / lifespan model of a 3D root system.

    The tap root carries three depth levels of horizontal roots. Each level grows in
    rounds tagged with a start phase; every produced curve is stored with its phase
    interval under one of three roles (master, tap, explorer) and queried by phase.

    Without a soil index (or with an empty one) the model runs in simplified mode:
    straight segments and fixed explorer ratios.
    """

    def __init__(self, soil_index: Optional[SpatialSoilIndex], anchor, unit_len: float, phase: int,
                 div_n: int = 6, plane: Optional[Plane] = None, toggle_explorer: bool = False,
                 seed: Optional[int] = 0):
        self.soil = soil_index
        self.simplified: bool = soil_index is None or len(soil_index) == 0
        if soil_index is not None:
            self.plane: Plane = soil_index.plane
        else:
            self.plane = plane if plane is not None else Plane.world_xy()
        self.up: np.ndarray = self.plane.normal
        self.anchor: np.ndarray = utils.as_point(anchor)
        self.unit_len: float = float(unit_len)
        self.phase: int = int(phase)
        self.div_n: int = int(div_n)
        self.toggle_explorer: bool = bool(toggle_explorer)
        self.rng: np.random.Generator = utils.get_rng(seed)
        self.branches: Dict[str, List[RootBranch]] = {role: [] for role in ROLES}

    # --- bookkeeping ---
    def _add(self, role: str, curves: Sequence[Polyline], start: int, end: int):
        end = min(end, constants.PHASE_CEILING)
        for crv in curves:
            self.branches[role].append(RootBranch(crv, start, end))

    def validate(self) -> GrowthResult:
        if not constants.MIN_PHASE <= self.phase <= constants.MAX_PHASE:
            return GrowthResult.failure(
                f"Phase must be within [{constants.MIN_PHASE}, {constants.MAX_PHASE}], got {self.phase}."
            )
        if self.unit_len <= 0:
            return GrowthResult.failure(f"Unit length must be positive, got {self.unit_len}.")
        if self.div_n < 3:
            return GrowthResult.failure(f"Root division number must be at least 3, got {self.div_n}.")
        return GrowthResult(True)

    # --- guided stepping ---
    def _find_best_direction(self, cur: np.ndarray, candidates: List[np.ndarray],
                             preferred: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Blends the preferred direction with the best aligned soil candidate.
        Returns the new unit direction and the distance to the closest usable candidate
        (0 when none qualifies).
        """
        pref = utils.normalize_vector(preferred)
        good = []
        for p in candidates:
            v = p - cur
            d = float(np.linalg.norm(v))
            if d < self.unit_len * 0.001:
                continue
            u = v / d
            alignment = float(np.dot(pref, u))
            if alignment > constants.GUIDED_MIN_ALIGNMENT:
                good.append((alignment, u, d))
        if not good:
            return pref, 0.0

        good.sort(key=lambda item: -item[0])
        w = constants.GUIDED_PREFERRED_WEIGHT
        blended = utils.normalize_vector(pref * w + good[0][1] * (1.0 - w))

        perturb = self.rng.uniform(-constants.GUIDED_PERTURB_RAD, constants.GUIDED_PERTURB_RAD)
        perp = np.cross(blended, self.up)
        if np.linalg.norm(perp) > 0.001:
            blended = rotate_vector(blended, perturb, perp)
        return blended, min(item[2] for item in good)

    def _constrain_to_horizontal(self, proposed: np.ndarray, original: np.ndarray) -> np.ndarray:
        vertical = float(np.dot(proposed, self.up))
        horizontal = proposed - vertical * self.up
        if np.linalg.norm(horizontal) < 0.001:
            horizontal = original - np.dot(original, self.up) * self.up
        horizontal = utils.normalize_vector(horizontal)
        limit = constants.HORIZONTAL_MAX_VERTICAL
        clamped = max(-limit, min(limit, vertical))
        return utils.normalize_vector(horizontal + clamped * self.up)

    def grow_along_vec(self, cen, max_length: float, direction) -> Polyline:
        """
        Grows one root segment of max_length from cen. Soil points steer the direction;
        a step only stretches past its nominal length when the nearest usable soil point
        lies farther away than that.
        """
        cen = utils.as_point(cen)
        unit = utils.normalize_vector(utils.as_point(direction))
        if self.simplified or max_length <= 0:
            return Polyline.line(cen, cen + unit * max(max_length, 0.0))

        is_horizontal = abs(float(np.dot(unit, self.up))) < constants.HORIZONTAL_THRESHOLD
        step_len = max_length / constants.GUIDED_STEPS
        cur = cen
        cur_dir = unit
        pts = [cen]
        for _ in range(constants.GUIDED_STEPS):
            candidates = self.soil.nearest_points(cur, constants.GUIDED_NEIGHBOURS)
            best, reach = self._find_best_direction(cur, candidates, cur_dir)
            if is_horizontal:
                best = self._constrain_to_horizontal(best, cur_dir)
            cur = cur + best * max(step_len, reach)
            pts.append(cur)
            cur_dir = best
        return Polyline(pts)

    def grow_in_segments(self, cen, max_length: float, direction, seg_n: int) -> List[Polyline]:
        res = []
        start = utils.as_point(cen)
        seg_len = max_length / seg_n
        for _ in range(seg_n):
            seg = self.grow_along_vec(start, seg_len, direction)
            res.append(seg)
            start = seg.end
        return res

    def _direction_fan(self, count: int) -> List[np.ndarray]:
        ang = 2.0 * constants.PI / count
        return [utils.normalize_vector(self.plane.x_axis * np.cos(ang * i) + self.plane.y_axis * np.sin(ang * i))
                for i in range(count)]

    def branch_on_side(self, root: Polyline, length: float) -> List[Polyline]:
        res = []
        for i, t in enumerate((0.3, 0.6)):
            tan = root.tangent_at(t)
            perp = (-1.0) ** i * np.cross(tan, self.up)
            res.append(self.grow_along_vec(root.point_at(t), length, utils.normalize_vector(perp * 0.5 + tan * 0.5)))
        return res

    def branch_root(self, root: Polyline, length: float, count: int = 1) -> List[Polyline]:
        branches = []
        for i in range(count):
            start = root.end
            perp = utils.normalize_vector(np.cross(root.tangent_at(1.0), self.up))
            tangent = utils.normalize_vector(np.cross(self.up, perp))
            branch_len = length / (count - i)
            branches.append(self.grow_along_vec(start, branch_len, utils.normalize_vector(tangent + 0.5 * perp)))
            branches.append(self.grow_along_vec(start, branch_len, utils.normalize_vector(tangent - 0.5 * perp)))
        return branches

    def tap_root(self, start, length: float) -> Polyline:
        return self.grow_along_vec(start, length, -self.up)

    def _explorer(self, start: np.ndarray, parent_dir: np.ndarray, length: float, reverse: bool) -> Polyline:
        parent_dir = utils.normalize_vector(parent_dir)
        horizontal = utils.normalize_vector(np.cross(parent_dir, self.up)) * (-1.0 if reverse else 1.0)
        if self.simplified:
            forward, downward = 0.25, 0.2
        else:
            forward = self.rng.uniform(0.15, 0.35)
            downward = self.rng.uniform(0.15, 0.25)
        cur_dir = utils.normalize_vector(0.7 * horizontal + forward * parent_dir - downward * self.up)

        step_len = length / constants.EXPLORER_STEPS
        pts = [start]
        cur = start
        for step in range(constants.EXPLORER_STEPS):
            if step >= constants.EXPLORER_HORIZONTAL_STEPS:
                strength = 0.15 + 0.07 * (step - constants.EXPLORER_HORIZONTAL_STEPS)
                cur_dir = utils.normalize_vector(cur_dir - strength * self.up)
            seg = self.grow_along_vec(cur, step_len, cur_dir)
            pts.extend(seg.points[1:])
            cur = seg.end
        return Polyline(pts)

    def explorer_roots(self, main_root: Polyline, point_count: int) -> List[Polyline]:
        params = [0.0] if point_count <= 1 else [i / point_count for i in range(point_count)]
        base = self.unit_len * 0.2 if self.simplified else main_root.length * 1.5
        res = []
        for t in params:
            pt = main_root.point_at(t)
            tan = main_root.tangent_at(t)
            dist = base * 1.5 if self.simplified else base * self.rng.uniform(2.0, 2.8)
            res.append(self._explorer(pt, tan, dist, False))
            res.append(self._explorer(pt, tan, dist, True))
        return res

    # --- level schedule ---
    def _branching_rounds(self, fronts: List[Polyline], rounds: int, first_phase: int, lengths: List[float],
                          tap_len: float, tap_life: int, master_end: int, explorer_points: int,
                          explorer_ceiling: int) -> List[Polyline]:
        for k in range(max(rounds, 0)):
            start = first_phase + k
            next_fronts, taps, explorers = [], [], []
            for root in fronts:
                branched = self.branch_root(root, self.unit_len * lengths[k], 1)
                next_fronts.extend(branched)
                taps.append(self.tap_root(root.end, tap_len))
                if self.toggle_explorer:
                    for b in branched:
                        explorers.extend(self.explorer_roots(b, explorer_points))
            self._add(MASTER, next_fronts, start, master_end)
            self._add(TAP, taps, start, start + tap_life)
            if self.toggle_explorer:
                spawn = start + 1
                self._add(EXPLORER, explorers, spawn, min(explorer_ceiling, spawn + constants.EXPLORER_LIFETIME))
            fronts = next_fronts
        return fronts

    def _extension_rounds(self, fronts: List[Polyline], rounds: int, first_phase: int, length: float,
                          master_end: int, explorer_ceiling: int) -> List[Polyline]:
        for k in range(max(rounds, 0)):
            start = first_phase + k
            masters, next_fronts, explorers = [], [], []
            for root in fronts:
                segments = self.grow_in_segments(root.end, self.unit_len * length, root.tangent_at(1.0), 4)
                masters.extend(segments)
                next_fronts.append(segments[-1])
                if self.toggle_explorer:
                    for seg in segments:
                        explorers.extend(self.explorer_roots(seg, 2))
            self._add(MASTER, masters, start, master_end)
            if self.toggle_explorer:
                spawn = start + 1
                self._add(EXPLORER, explorers, spawn, min(explorer_ceiling, spawn + constants.EXPLORER_LIFETIME))
            fronts = next_fronts
        return fronts

    def grow_root(self) -> GrowthResult:
        """
        Grows the whole root system and tags every curve with its phase interval.
        Returns a failed GrowthResult on bad parameters or when the soil is too sparse
        to steer the tap root.
        """
        check = self.validate()
        if not check.success:
            return check

        tap_len = self.unit_len * constants.TAP_ROOT_LENGTH_RATIO
        r1, r2 = constants.TAP_ROOT_PART_RATIOS
        tap1 = self.tap_root(self.anchor, tap_len * r1)
        tap2 = self.tap_root(tap1.end, tap_len * r2)
        self._add(TAP, [tap1], 1, 11)
        self._add(TAP, [tap2], 2, 11)
        if not self.simplified and tap1.length + tap2.length > tap_len * constants.TAP_ROOT_DENSITY_LIMIT:
            return GrowthResult.failure(constants.INSUFFICIENT_DENSITY_MESSAGE)
        tap_root = Polyline(np.vstack((tap1.points, tap2.points[1:])))

        # Level 1
        core = [self.grow_along_vec(tap_root.point_at(0.05), self.unit_len * 0.2, v)
                for v in self._direction_fan(self.div_n)]
        self._add(MASTER, core, 2, constants.PHASE_CEILING)
        sides = []
        for root in core:
            sides.extend(self.branch_on_side(root, self.unit_len * 0.1))
        self._add(MASTER, sides, 2, constants.PHASE_CEILING)
        fronts = self._branching_rounds(core, min(self.phase - 2, 3), 3, [0.1, 0.2, 0.3],
                                        tap_len * 0.7, 4, constants.PHASE_CEILING, 4, 11)
        self._extension_rounds(fronts, min(3, self.phase - 5), 6, 0.4, constants.PHASE_CEILING, 11)

        # Level 2
        core = [self.grow_along_vec(tap_root.point_at(0.4), self.unit_len * 0.15, v)
                for v in self._direction_fan(self.div_n - 1)]
        self._add(MASTER, core, 4, 11)
        fronts = self._branching_rounds(core, min(self.phase - 4, 2), 5, [0.1, 0.13],
                                        tap_len * 0.3, 3, 10, 3, 10)
        self._extension_rounds(fronts, min(1, self.phase - 6), 7, 0.5, 10, 10)

        # Level 3
        core = [self.grow_along_vec(tap_root.point_at(0.9), self.unit_len * 0.1, v)
                for v in self._direction_fan(self.div_n - 2)]
        self._add(MASTER, core, 6, 10)
        self._extension_rounds(core, min(1, self.phase - 5), 7, 0.4, 9, 9)

        counts = {role: len(self.branches[role]) for role in ROLES}
        logger.info(f"3D root grown at phase {self.phase}: {counts}")
        return GrowthResult(True, "Success", {"counts": counts})

    # --- queries ---
    def _phase(self, phase: Optional[int]) -> int:
        return self.phase if phase is None else int(phase)

    def get_active_at_phase(self, role: str, phase: Optional[int] = None) -> List[Polyline]:
        p = self._phase(phase)
        return [b.curve for b in self.branches[role] if b.is_alive(p)]

    def get_dead_at_phase(self, role: str = EXPLORER, phase: Optional[int] = None) -> List[Polyline]:
        p = self._phase(phase)
        return [b.curve for b in self.branches[role] if b.is_dead(p)]

    def get_by_start_phase(self, role: str, phase: Optional[int] = None, dead: bool = False) -> Dict[int, List[Polyline]]:
        """Active (or dead) curves grouped by the phase they started in."""
        p = self._phase(phase)
        res: Dict[int, List[Polyline]] = {}
        for b in self.branches[role]:
            if (b.is_dead(p) if dead else b.is_alive(p)):
                res.setdefault(b.start, []).append(b.curve)
        return res

    # --- post-processing ---
    def _in_plane_distances(self, pts: np.ndarray) -> np.ndarray:
        d = pts - self.anchor
        d = d - np.outer(d @ self.up, self.up)
        return np.linalg.norm(d, axis=1)

    def max_radius(self, samples_per_unit: float = 10.0) -> float:
        """Largest in-plane distance from the anchor, sampled along every curve by length."""
        best = 0.0
        for role in ROLES:
            for b in self.branches[role]:
                n = max(2, int(math.ceil(b.curve.length * samples_per_unit)) + 1)
                samples = np.array([b.curve.point_at(t) for t in np.linspace(0.0, 1.0, n)])
                samples = np.vstack((samples, b.curve.points))
                best = max(best, float(self._in_plane_distances(samples).max()))
        return best

    def scale_to_radius(self, target_radius: float, samples_per_unit: float = 10.0) -> float:
        """
        Uniformly scales every branch about the anchor so the widest in-plane reach
        equals target_radius. Returns the applied factor (1.0 when nothing to scale).
        """
        current = self.max_radius(samples_per_unit)
        if target_radius <= 0 or current < constants.EPSILON:
            logger.warning(f"Root rescale skipped (target={target_radius}, current reach={current}).")
            return 1.0
        factor = target_radius / current
        for role in ROLES:
            for b in self.branches[role]:
                b.curve = b.curve.scaled(self.anchor, factor)
        logger.info(f"Scaled root system by {factor:.4f} to radius {target_radius}.")
        return factor

    def neighbour_scale_factor(self, branch: RootBranch, neighbour_anchors: Sequence,
                               own_radius: float) -> float:
        direction = self.plane.project_vector(branch.curve.end - self.anchor)
        if np.linalg.norm(direction) < 0.001:
            return 1.0
        direction = utils.normalize_vector(direction)
        half_angle = math.radians(constants.NEIGHBOUR_CONE_HALF_ANGLE_DEG)

        nearest = math.inf
        nearest_angle = 0.0
        for nb in neighbour_anchors:
            to_nb = self.plane.project_vector(utils.as_point(nb) - self.anchor)
            dist = float(np.linalg.norm(to_nb))
            if dist < 0.001:
                continue
            angle = math.acos(float(np.clip(np.dot(direction, to_nb / dist), -1.0, 1.0)))
            if angle <= half_angle and dist < nearest:
                nearest = dist
                nearest_angle = angle
        if math.isinf(nearest):
            return 1.0

        available = max(nearest * constants.NEIGHBOUR_DISTANCE_RATIO, own_radius * constants.NEIGHBOUR_MIN_RADIUS_RATIO)
        furthest = float(self._in_plane_distances(branch.curve.points).max())
        if furthest <= available:
            return 1.0
        base = max(available / furthest, constants.NEIGHBOUR_MIN_SCALE)
        blend = 0.5 * (1.0 - math.cos(nearest_angle / half_angle * math.pi))
        return base + blend * (1.0 - base)

    def apply_neighbour_scaling(self, neighbour_anchors: Sequence) -> int:
        """
        Simplified competition with neighbouring root systems: each branch reaching toward
        a neighbour anchor is shrunk in plane about this anchor. Returns how many branches
        were scaled.
        """
        if not neighbour_anchors:
            return 0
        own_radius = self.max_radius()
        scaled = 0
        for role in ROLES:
            for b in self.branches[role]:
                factor = self.neighbour_scale_factor(b, neighbour_anchors, own_radius)
                if factor < 1.0:
                    b.curve = b.curve.scaled_in_plane(self.anchor, factor, self.plane)
                    scaled += 1
        logger.info(f"Neighbour scaling adjusted {scaled} branches.")
        return scaled


def grow_tree3d_roots(config: dict, soil_index: Optional[SpatialSoilIndex]) -> GrowthResult:
    """Config driven 3D growth; the payload carries the tree and its phase-filtered curves."""
    phase = int(config_manager.get_param(config, "root.phase", constants.MAX_PHASE))
    tree = RootTree3D(
        soil_index,
        anchor=config_manager.get_param(config, "root.anchor", [0.0, 0.0, 0.0]),
        unit_len=float(config_manager.get_param(config, "root.unit_len", 10.0)),
        phase=phase,
        div_n=int(config_manager.get_param(config, "root.div_n", 6)),
        toggle_explorer=bool(config_manager.get_param(config, "root.toggle_explorer", False)),
        seed=config_manager.get_param(config, "simulation.random_seed", 0),
    )
    result = tree.grow_root()
    if not result.success:
        return result

    target_radius = config_manager.get_param(config, "root.target_radius", None)
    if target_radius:
        tree.scale_to_radius(float(target_radius))
    neighbours = config_manager.get_param(config, "root.neighbour_anchors", []) or []
    if neighbours:
        tree.apply_neighbour_scaling(neighbours)

    result.payload.update({
        "tree": tree,
        "master": tree.get_active_at_phase(MASTER),
        "tap": tree.get_active_at_phase(TAP),
        "explorer": tree.get_active_at_phase(EXPLORER),
        "dead": tree.get_dead_at_phase(EXPLORER),
    })
    return result
