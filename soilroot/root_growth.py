# soilroot/root_growth.py
from __future__ import annotations # Must be first line for postponed evaluation of annotations

import numpy as np
import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from soilroot import utils, constants, config_manager
from soilroot.data_structures import GrowthGraph, GrowthResult, RootNode, RootNodeType
from soilroot.geometry import Plane, Polyline, rotate_vector, to_radian
from soilroot.soil_index import GridKey, SpatialSoilIndex, make_key
from soilroot.steering import EnvProps, steer

logger = logging.getLogger(__name__)

BOUNDARY_MODES = ("prune", "reflect")


@dataclass
class RootProps:
    anchor: np.ndarray
    root_type: str = "single"
    total_steps: int = constants.DEFAULT_TOTAL_STEPS
    branch_n: int = constants.DEFAULT_BRANCH_N
    boundary_mode: str = "prune"


def validate_root_props(props: RootProps) -> GrowthResult:
    """Checks a sectional configuration; growth must be bounded by construction."""
    if props.total_steps is None or int(props.total_steps) <= 0:
        return GrowthResult.failure(f"Total steps must be positive, got {props.total_steps}.")
    if int(props.branch_n) < 2:
        return GrowthResult.failure("Root should have branch number >= 2.")
    if props.root_type not in constants.ROOT_TYPE_MAX_LEVEL:
        return GrowthResult.failure(
            f"Unknown root type '{props.root_type}'. Expected one of {sorted(constants.ROOT_TYPE_MAX_LEVEL)}."
        )
    if props.boundary_mode not in BOUNDARY_MODES:
        return GrowthResult.failure(f"Unknown boundary mode '{props.boundary_mode}'.")
    return GrowthResult(True)


def _flip_along(v: np.ndarray, axis: np.ndarray) -> np.ndarray:
    """Mirrors the component of v along a unit axis."""
    return v - 2.0 * np.dot(v, axis) * axis


class SectionalRootGrowth:
    """
    Frontier-driven (BFS) root growth on a vertical soil section.

    Every accepted node sits on a soil sample point. Each step's direction is nudged
    by density avoidance, a gravity pull that strengthens with the step ratio, and a
    small lateral perturbation. The score and usage maps belong to this instance only.
    """

    def __init__(self, soil_index: SpatialSoilIndex, root_props: RootProps,
                 env_props: Optional[EnvProps] = None, seed: Optional[int] = None):
        self.soil: SpatialSoilIndex = soil_index
        self.props: RootProps = root_props
        self.env: EnvProps = env_props if env_props is not None else EnvProps()
        self.plane: Plane = soil_index.plane
        self.down: np.ndarray = -self.plane.y_axis
        self.max_branch_level: int = constants.ROOT_TYPE_MAX_LEVEL.get(root_props.root_type, 1)
        self.rng: np.random.Generator = utils.get_rng(seed)

        self.graph: GrowthGraph = GrowthGraph()
        self.score_map: Dict[GridKey, float] = {key: 0.0 for key in soil_index.keys}
        self.usage: Dict[GridKey, int] = {}
        self.frontier: deque = deque()
        self.root: Optional[RootNode] = None

    @property
    def main_lines(self) -> List[Polyline]:
        return self.graph.main_lines

    @property
    def side_lines(self) -> List[Polyline]:
        return self.graph.side_lines

    # --- seeding ---
    def seed_directions(self) -> List[np.ndarray]:
        """branch_n directions spread evenly over the lower half circle."""
        n = int(self.props.branch_n)
        unit_ang = constants.PI / n
        init_vec = rotate_vector(self.plane.x_axis, 0.5 * unit_ang, self.plane.normal)
        return [rotate_vector(init_vec, -unit_ang * (i + 1), self.plane.normal) for i in range(n)]

    def _seed(self):
        anchor = self.soil.nearest_point(self.props.anchor)
        self.root = self.graph.add_root(anchor, self.down)
        for vec in self.seed_directions():
            pos = self.soil.nearest_point(anchor + constants.SEED_DISTANCE_FACTOR * vec * self.soil.unit_len)
            if utils.distance_squared(pos, anchor) < constants.MIN_STEP_DIST_SQ:
                logger.warning("Seed root collapsed onto the anchor point; skipped.")
                continue
            child = self.graph.add_child(self.root, pos, RootNodeType.STEM)
            self._update_score_map(child)
            self.frontier.append(child)
            self.graph.record_line(anchor, pos, main=True)

    # --- per step ---
    def _density_ok(self, pos: np.ndarray) -> bool:
        return self.usage.get(self.soil.key_of(pos), 0) <= constants.MAX_LOCATION_USAGE

    def _grow_candidate(self, node: RootNode, direction: np.ndarray, node_type: RootNodeType,
                        branching: bool, out: List[RootNode]):
        end_pt = steer(node.pos, direction, self.env)
        snapped = self.soil.nearest_point(end_pt)
        if utils.distance_squared(node.pos, snapped) < constants.MIN_STEP_DIST_SQ or not self._density_ok(snapped):
            return
        out.append(self.graph.add_child(node, snapped, node_type, branching=branching))

    def _expand(self, node: RootNode) -> List[RootNode]:
        children: List[RootNode] = []
        if node.node_type == RootNodeType.STEM:
            lo, hi = constants.STEM_SCALE_RANGE
            scale = self.soil.unit_len * int(self.rng.integers(lo, hi)) / 100.0
        else:
            scale = self.soil.unit_len
        direction = node.direction * scale
        self._grow_candidate(node, direction, node.node_type, False, children)

        interval = constants.BRANCHING_INTERVAL
        if node.branch_level < self.max_branch_level and node.step_counting % interval == 0:
            sign = 1.0 if (node.step_counting // interval) % 2 == 1 else -1.0
            side_dir = rotate_vector(direction, sign * to_radian(constants.BRANCH_ANGLE_DEG), self.plane.normal)
            self._grow_candidate(node, side_dir, RootNodeType.SIDE, True, children)
        return children

    def _update_score_map(self, node: RootNode):
        if node.step <= constants.SCORE_WARMUP_STEPS:
            return
        for key in self.soil.nearest_keys(node.pos, constants.SCORE_NEIGHBOURS):
            dist = utils.distance(node.pos, self.soil.point_of(key))
            self.score_map[key] = self.score_map.get(key, 0.0) + 1.0 / (1.0 + dist)

    def _apply_density(self, node: RootNode):
        if node.step <= constants.SCORE_WARMUP_STEPS or self.soil.unit_len <= 0:
            return
        sum_vec = np.zeros(3)
        for key in self.soil.nearest_keys(node.pos, constants.SCORE_NEIGHBOURS):
            sum_vec += self.score_map.get(key, 0.0) * (self.soil.point_of(key) - node.pos) / self.soil.unit_len
        node.direction = node.direction - utils.normalize_vector(sum_vec) * constants.DENSITY_MULTIPLIER

    def _apply_gravity(self, node: RootNode):
        ratio = node.step / float(self.props.total_steps)
        factor = constants.GRAVITY_FIT_A * math.exp(constants.GRAVITY_FIT_B * ratio)
        node.direction = node.direction + self.down * factor * constants.GRAVITY_MULTIPLIER

    def _apply_perturbation(self, node: RootNode):
        perp = np.cross(self.plane.normal, node.direction)
        sign = -1.0 if np.dot(node.direction, self.plane.x_axis) >= 0 else 1.0
        node.direction = node.direction + sign * constants.PERTURBATION_MULTIPLIER * self.rng.random() * perp

    # --- main loop ---
    def grow(self) -> GrowthGraph:
        if len(self.soil) == 0:
            logger.warning("Sectional growth skipped: soil index is empty.")
            return self.graph

        self._seed()
        total = int(self.props.total_steps)
        pruned = 0
        while self.frontier:
            node = self.frontier.popleft()

            if node.step >= total or node.lifespan == 0:
                pruned += 1
                continue

            if self.soil.is_on_boundary(node.pos):
                if self.props.boundary_mode == "prune":
                    pruned += 1
                    continue
                node.direction = _flip_along(node.direction, self.plane.y_axis)

            if np.dot(node.direction, self.plane.y_axis) > 0.5 * np.linalg.norm(node.direction):
                node.direction = _flip_along(node.direction, self.plane.y_axis)

            for child in self._expand(node):
                self._update_score_map(child)
                self._apply_density(child)
                self._apply_gravity(child)
                self._apply_perturbation(child)
                child.direction = utils.normalize_vector(child.direction)

                key = self.soil.key_of(child.pos)
                self.usage[key] = self.usage.get(key, 0) + 1
                self.graph.record_line(node.pos, child.pos, main=child.branch_level == 0)
                if child.lifespan != 0:
                    self.frontier.append(child)

        logger.info(f"Sectional growth finished: {len(self.graph)} nodes, "
                    f"{len(self.main_lines)} main / {len(self.side_lines)} side segments, {pruned} pruned.")
        return self.graph


class PlanarRootGrowth:
    """
    Phase-driven radial root drawing in the soil plane (seen from above).

    Phase 1 spreads div_n centre roots, phases 2-4 split every front root in two
    (+/-30 deg) and phase 5 extends each front root, bending with its curvature.
    Absorbent hairs are added along every drawn line afterwards.
    """

    def __init__(self, soil_index: SpatialSoilIndex, anchor, scale: float = 1.0, phase: int = 1,
                 div_n: int = 4, env_props: Optional[EnvProps] = None):
        self.soil = soil_index
        self.plane = soil_index.plane
        self.anchor = utils.as_point(anchor)
        self.scale = float(scale)
        self.phase = int(phase)
        self.div_n = int(div_n)
        # Planar detect range is given in soil spacings.
        self.env = EnvProps() if env_props is None else replace(
            env_props, detect_range=env_props.detect_range * self.soil.unit_len)

        n_levels = constants.PLANAR_MAX_PHASE
        self.levels: List[List[Polyline]] = [[] for _ in range(n_levels)]
        self.absorbent: List[Polyline] = []
        self._front_keys: List[List[GridKey]] = [[] for _ in range(n_levels)]
        self._front_dirs: List[List[np.ndarray]] = [[] for _ in range(n_levels)]

    def _length(self, level: int) -> float:
        return self.soil.unit_len * self.scale * constants.PLANAR_SCALE_FACTORS[level]

    def _branch_extend(self, level: int, start: np.ndarray, direction: np.ndarray, length: float):
        end_off = steer(start, direction * length, self.env)
        start_key = self.soil.key_of(start)
        # A line never collapses back onto its own start point.
        keys = [k for k in self.soil.nearest_keys(end_off, 2) if k != start_key]
        if not keys:
            return
        end_key = keys[0]
        end = self.soil.point_of(end_key)
        self.levels[level].append(Polyline.line(start, end))
        self._front_keys[level].append(end_key)
        self._front_dirs[level].append(utils.normalize_vector(end - start))

    def _phase_centre(self, level: int):
        ang = 2.0 * constants.PI / self.div_n
        length = self._length(level)
        for i in range(self.div_n):
            direction = np.cos(ang * i) * self.plane.x_axis + np.sin(ang * i) * self.plane.y_axis
            self._branch_extend(level, self.anchor, direction, length)

    def _phase_branch(self, level: int):
        prev = level - 1
        length = self._length(level)
        rad = to_radian(constants.PLANAR_BRANCH_ANGLE_DEG)
        for key, vec in zip(self._front_keys[prev], self._front_dirs[prev]):
            start = self.soil.point_of(key)
            self._branch_extend(level, start, rotate_vector(vec, rad, self.plane.normal), length)
            self._branch_extend(level, start, rotate_vector(vec, -rad, self.plane.normal), length)

    def _phase_extend(self, level: int):
        prev = level - 1
        length = self._length(level)
        for i, (key, cur_vec) in enumerate(zip(self._front_keys[prev], self._front_dirs[prev])):
            pre_vec = self._front_dirs[prev - 1][i // 2]
            sign = np.dot(np.cross(cur_vec, pre_vec), self.plane.normal)
            ang = constants.PLANAR_EXTEND_ANGLE_DEG if sign >= 0 else -constants.PLANAR_EXTEND_ANGLE_DEG
            new_vec = rotate_vector(cur_vec, to_radian(ang), self.plane.normal)
            self._branch_extend(level, self.soil.point_of(key), new_vec, length)

    def create_absorbent(self, roots: List[Polyline], divisions: int = constants.ABSORBENT_DIVISIONS):
        rad = to_radian(constants.ABSORBENT_ANGLE_DEG)
        for ln in roots:
            if ln.length == 0:
                continue
            seg_len = ln.length * constants.ABSORBENT_LENGTH_RATIO
            unit = utils.normalize_vector(ln.end - ln.start)
            dir0 = rotate_vector(unit, rad, self.plane.normal)
            dir1 = rotate_vector(unit, -rad, self.plane.normal)
            for p in ln.divide_by_count(divisions, include_ends=False):
                self.absorbent.append(Polyline.line(p, p + dir0 * seg_len))
                self.absorbent.append(Polyline.line(p, p + dir1 * seg_len))

    def grow(self) -> Tuple[List[List[Polyline]], List[Polyline]]:
        if len(self.soil) < 2:
            logger.warning("Planar growth skipped: soil index needs at least two points.")
            return self.levels, self.absorbent

        for phase_id in range(1, min(self.phase, constants.PLANAR_MAX_PHASE) + 1):
            level = phase_id - 1
            if phase_id == 1:
                self._phase_centre(level)
            elif phase_id < constants.PLANAR_MAX_PHASE:
                self._phase_branch(level)
            else:
                self._phase_extend(level)

        for roots in self.levels:
            self.create_absorbent(roots)
        logger.info(f"Planar growth finished: {sum(len(l) for l in self.levels)} root lines, "
                    f"{len(self.absorbent)} absorbent lines.")
        return self.levels, self.absorbent


class TopologyRootGrowth:
    """
    Legacy sectional mode: hops along the directional neighbour map until the roots
    reach a given radius from the anchor. Needs SpatialSoilIndex.build_topology first.
    """

    MAX_ITERATIONS = 5000
    ATTEMPTS_PER_FRONT = 20

    def __init__(self, soil_index: SpatialSoilIndex, anchor, root_type: str = "single",
                 seed: Optional[int] = None):
        self.soil = soil_index
        self.anchor = utils.as_point(anchor)
        self.branch_num = 2 if root_type == "multi" else 1
        self.rng = utils.get_rng(seed)
        self.lines: List[Polyline] = []

    def grow(self, radius: float) -> List[Polyline]:
        if not self.soil.topology:
            logger.warning("Topology growth skipped: topology map has not been built.")
            return self.lines
        start_key = self.soil.nearest_key(self.anchor)
        if start_key is None:
            return self.lines

        dist_map = {key: utils.distance(self.soil.point_of(key), self.anchor) for key in self.soil.keys}
        front: List[GridKey] = [start_key]
        cur_r = 0.0
        for _ in range(self.MAX_ITERATIONS):
            if not front or cur_r >= radius:
                break
            start = front.pop(int(self.rng.integers(0, len(front))))
            next_front: List[GridKey] = []
            for _ in range(self.ATTEMPTS_PER_FRONT):
                if len(next_front) >= self.branch_num:
                    break
                found = self.soil.next_point_and_distance(start)
                if found is None:
                    break
                nxt = make_key(found[0])
                if nxt in next_front:
                    continue
                next_front.append(nxt)
                self.lines.append(Polyline.line(self.soil.point_of(start), found[0]))
                cur_r = max(cur_r, dist_map[nxt])
            for key in next_front:
                if key not in front:
                    front.append(key)
        logger.info(f"Topology growth finished: {len(self.lines)} segments, reached radius {cur_r:.3f}.")
        return self.lines


def die_back(graph: GrowthGraph, fraction: float, min_step: int = 2,
             rng: Optional[np.random.Generator] = None) -> int:
    """
    Turns off random subtrees until at least `fraction` of the nodes is inactive.
    Only nodes at min_step or deeper are picked as subtree roots. Returns the number
    of nodes switched off.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"Die-back fraction must be within [0, 1], got {fraction}.")
    rng = rng if rng is not None else utils.get_rng()
    target = int(math.ceil(fraction * len(graph)))
    inactive = sum(1 for n in graph.nodes if not n.active)
    candidates = [n.index for n in graph.nodes if n.step >= min_step]
    order = rng.permutation(candidates) if candidates else []
    turned = 0
    for idx in order:
        if inactive >= target:
            break
        if graph.node(int(idx)).active:
            changed = graph.turn_off(int(idx))
            turned += changed
            inactive += changed
    logger.info(f"Die-back switched off {turned} of {len(graph)} nodes.")
    return turned


# --- Config driven entry points ---

def root_props_from_config(config: dict) -> RootProps:
    return RootProps(
        anchor=utils.as_point(config_manager.get_param(config, "root.anchor", [0.0, 0.0, 0.0])),
        root_type=config_manager.get_param(config, "root.root_type", "single"),
        total_steps=config_manager.get_param(config, "root.total_steps", constants.DEFAULT_TOTAL_STEPS),
        branch_n=config_manager.get_param(config, "root.branch_n", constants.DEFAULT_BRANCH_N),
        boundary_mode=config_manager.get_param(config, "root.boundary_mode", "prune"),
    )


def grow_sectional_roots(config: dict, soil_index: SpatialSoilIndex,
                         env_props: Optional[EnvProps] = None) -> GrowthResult:
    """
    Runs one sectional growth session. Configuration problems come back as a failed
    GrowthResult; the payload holds the graph and the main / side / dead line lists.
    """
    props = root_props_from_config(config)
    check = validate_root_props(props)
    if not check.success:
        return check
    if len(soil_index) == 0:
        return GrowthResult.failure("Soil index is empty; nothing to grow into.")

    seed = config_manager.get_param(config, "simulation.random_seed", -1)
    logger.info(f"Starting sectional growth: type={props.root_type}, steps={props.total_steps}, "
                f"branches={props.branch_n}, seed={seed}")
    engine = SectionalRootGrowth(soil_index, props, env_props, seed=seed)
    graph = engine.grow()

    dead_lines: List[Polyline] = []
    fraction = float(config_manager.get_param(config, "root.die_back_fraction", 0.0) or 0.0)
    if fraction > 0:
        die_back(graph, fraction, rng=engine.rng)
        dead_lines = graph.inactive_edges_as_lines()

    return GrowthResult(True, "ok", {
        "graph": graph,
        "main_lines": list(graph.main_lines),
        "side_lines": list(graph.side_lines),
        "dead_lines": dead_lines,
    })


def grow_planar_roots(config: dict, soil_index: SpatialSoilIndex,
                      env_props: Optional[EnvProps] = None) -> GrowthResult:
    phase = int(config_manager.get_param(config, "root.phase", constants.PLANAR_MAX_PHASE))
    if not 1 <= phase <= constants.PLANAR_MAX_PHASE:
        return GrowthResult.failure(
            f"Planar root phase must be within [1, {constants.PLANAR_MAX_PHASE}], got {phase}."
        )
    div_n = int(config_manager.get_param(config, "root.div_n", 4))
    if div_n < 1:
        return GrowthResult.failure(f"Planar root needs at least one division, got {div_n}.")
    if len(soil_index) < 2:
        return GrowthResult.failure("Soil index needs at least two points for planar growth.")

    engine = PlanarRootGrowth(
        soil_index,
        anchor=config_manager.get_param(config, "root.anchor", [0.0, 0.0, 0.0]),
        scale=config_manager.get_param(config, "root.scale", 1.0),
        phase=phase,
        div_n=div_n,
        env_props=env_props,
    )
    levels, absorbent = engine.grow()
    return GrowthResult(True, "ok", {"levels": levels, "absorbent_lines": absorbent})
