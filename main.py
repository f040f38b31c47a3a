# main.py
import argparse
import logging
import os
import time
from typing import Dict, List, Optional

from soilroot import config_manager, io_utils, utils, visualization
from soilroot import root_growth, root_phase, soil_index, steering
from soilroot.geometry import Plane, Polyline

logger = logging.getLogger(__name__)

MODES = ("sectional", "planar", "tree3d", "topology")


def setup_logging(log_level_str: str, log_file: str):
    """Configures logging for the simulation."""
    numeric_level = getattr(logging, log_level_str.upper(), logging.INFO)
    if not isinstance(numeric_level, int): # Fallback if level is invalid
        print(f"Warning: Invalid log level '{log_level_str}'. Defaulting to INFO.")
        numeric_level = logging.INFO

    # Make sure log directory exists
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, mode='w'), # Overwrite log file each run
            logging.StreamHandler() # Also print to console
        ]
    )
    # Suppress overly verbose logs if not in DEBUG
    if numeric_level > logging.DEBUG:
        logging.getLogger('pyvista').setLevel(logging.WARNING)
        logging.getLogger('matplotlib').setLevel(logging.WARNING)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parses command-line arguments."""
    parser = argparse.ArgumentParser(description="Soil-guided root growth simulation")
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to the YAML configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--output_dir",
        type=str,
        default=None,
        help="Override output directory from config file."
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=MODES,
        default=None,
        help="Override root.mode from config file."
    )
    return parser.parse_args(argv)


def build_soil_index(config: dict, seed: Optional[int] = None) -> Optional[soil_index.SpatialSoilIndex]:
    """
    Soil points come from paths.soil_points when given, otherwise from the synthetic
    lattice in the 'soil' section. Lattice 'none' returns None (simplified 3D mode).
    """
    plane = Plane.from_name(config_manager.get_param(config, "soil.plane", "xz"))
    points_path = config_manager.get_param(config, "paths.soil_points", None)
    lattice = config_manager.get_param(config, "soil.lattice", "square")

    index = soil_index.SpatialSoilIndex(plane=plane, seed=seed)
    if points_path:
        points = io_utils.load_soil_points_txt(points_path)
        if points is None:
            raise ValueError(f"Could not load soil points from {points_path}")
        return index.build(points)
    if lattice == "none":
        return None

    nx_, ny = config_manager.get_param(config, "soil.size", [20, 20])
    pitch = float(config_manager.get_param(config, "soil.pitch", 1.0))
    if lattice == "square":
        index.build(soil_index.square_lattice_points(nx_, ny, pitch, plane))
    elif lattice == "triangular":
        index.build(soil_index.triangular_lattice_points(nx_, ny, pitch, plane))
        index.build_topology(soil_index.triangular_lattice_triangles(nx_, ny, pitch, plane))
    else:
        raise ValueError(f"Unknown soil lattice '{lattice}'. Expected square, triangular or none.")
    return index


def merge_region_curves(config: dict) -> dict:
    """Appends the regions of paths.region_curves (if set) to the environment section."""
    path = config_manager.get_param(config, "paths.region_curves", None)
    if not path:
        return config
    regions = io_utils.load_region_curves_yaml(path)
    if regions is None:
        raise ValueError(f"Could not load region curves from {path}")
    env = config.get("environment") or {}
    for key in ("attractors", "repellers"):
        env[key] = list(env.get(key) or []) + list(regions[key])
    config["environment"] = env
    return config


def run_growth(config: dict, mode: str, index: Optional[soil_index.SpatialSoilIndex]) -> Optional[Dict]:
    """Runs one growth mode; returns the named line collections, or None on failure."""
    if mode == "tree3d":
        result = root_phase.grow_tree3d_roots(config, index)
        if not result.success:
            return None
        p = result.payload
        return {"collections": {"master": p["master"], "tap": p["tap"], "explorer": p["explorer"],
                                "dead": p["dead"]},
                "plane": p["tree"].plane}

    if index is None:
        logger.error(f"Mode '{mode}' needs a soil index; lattice 'none' is only valid for tree3d.")
        return None

    env_result = steering.env_props_from_config(config, index.plane)
    if not env_result.success:
        return None
    env = env_result.payload["env_props"]

    if mode == "sectional":
        result = root_growth.grow_sectional_roots(config, index, env)
        if not result.success:
            return None
        p = result.payload
        return {"collections": {"main": p["main_lines"], "side": p["side_lines"], "dead": p["dead_lines"]},
                "plane": index.plane, "graph": p["graph"].graph}
    if mode == "planar":
        result = root_growth.grow_planar_roots(config, index, env)
        if not result.success:
            return None
        roots: List[Polyline] = [ln for level in result.payload["levels"] for ln in level]
        return {"collections": {"main": roots, "absorbent": result.payload["absorbent_lines"]},
                "plane": index.plane}
    if mode == "topology":
        anchor = config_manager.get_param(config, "root.anchor", [0.0, 0.0, 0.0])
        radius = float(config_manager.get_param(config, "root.target_radius", None) or 5.0)
        engine = root_growth.TopologyRootGrowth(
            index, anchor, config_manager.get_param(config, "root.root_type", "single"),
            seed=config_manager.get_param(config, "simulation.random_seed", -1))
        return {"collections": {"main": engine.grow(radius)}, "plane": index.plane}

    logger.error(f"Unknown growth mode '{mode}'. Expected one of {MODES}.")
    return None


def main(argv: Optional[List[str]] = None):
    args = parse_arguments(argv)
    try:
        config = config_manager.load_config(args.config)
    except Exception as e:
        print(f"CRITICAL: Failed to load configuration file '{args.config}': {e}")
        return 1

    sim_name = config_manager.get_param(config, "simulation.simulation_name", "root_sim")
    base_output_dir_config = config_manager.get_param(config, "paths.output_dir", "output")
    base_output_dir = args.output_dir if args.output_dir else base_output_dir_config

    os.makedirs(base_output_dir, exist_ok=True) # Ensure base output dir exists
    output_dir = utils.create_output_directory(base_output_dir, sim_name, timestamp=True)

    log_level = config_manager.get_param(config, "simulation.log_level", "INFO")
    log_file_path = os.path.join(output_dir, f"{sim_name}.log")
    setup_logging(log_level, log_file_path)

    main_logger = logging.getLogger(__name__)
    main_logger.info(f"Simulation started. Output directory: {output_dir}")
    main_logger.info(f"Using configuration file: {os.path.abspath(args.config)}")

    try: io_utils.save_simulation_parameters(config, os.path.join(output_dir, "config_used.yaml"))
    except Exception as e_save_config: main_logger.error(f"Could not save used configuration file: {e_save_config}")

    seed_val = config_manager.get_param(config, "simulation.random_seed", None)
    if seed_val is not None:
        try: utils.set_rng_seed(int(seed_val))
        except ValueError: main_logger.warning(f"Invalid random_seed value '{seed_val}'. Using system default.")

    mode = args.mode or config_manager.get_param(config, "root.mode", "sectional")
    start_time = time.time()
    main_logger.info("--- Building Soil Index ---")
    try:
        index = build_soil_index(config, seed=seed_val if isinstance(seed_val, int) else None)
        merge_region_curves(config)
    except ValueError as ve:
        main_logger.critical(f"Critical error while preparing the soil or regions: {ve}", exc_info=True); return 1

    main_logger.info(f"--- Growing Roots ({mode}) ---")
    grown = run_growth(config, mode, index)
    if grown is None:
        main_logger.error("Root growth failed; see the messages above.")
        return 1
    collections = grown["collections"]

    if config_manager.get_param(config, "visualization.save_vtp", True):
        io_utils.save_root_branches_vtp(collections, os.path.join(output_dir, f"{mode}_roots.vtp"))
    io_utils.save_root_lines_csv(collections, os.path.join(output_dir, f"{mode}_roots.csv"))

    main_logger.info("--- Generating Final Visualizations ---")
    visualization.generate_final_visualizations(config, output_dir, collections,
                                                plane=grown.get("plane"), graph=grown.get("graph"))

    counts = {k: len(v) for k, v in collections.items()}
    main_logger.info(f"Simulation finished ({counts}). Total time: {time.time() - start_time:.2f}s. Output: {output_dir}")
    return 0

if __name__ == "__main__":
    temp_config_path = "config.yaml"
    if not os.path.exists(temp_config_path):
        try:
            config_manager.create_default_config(temp_config_path)
        except OSError as e: print(f"Could not create default config: {e}")
    raise SystemExit(main())
