# soilroot/config_manager.py
import yaml
import os
from typing import Any, Dict
import logging

logger = logging.getLogger(__name__)

def load_config(config_path: str) -> Dict[str, Any]:
    """
    Loads a YAML configuration file.

    Args:
        config_path (str): Path to the YAML configuration file.

    Returns:
        Dict[str, Any]: A dictionary containing the configuration parameters.

    Raises:
        FileNotFoundError: If the config file is not found.
        yaml.YAMLError: If there's an error parsing the YAML file.
    """
    if not os.path.exists(config_path):
        logger.error(f"Configuration file not found: {config_path}")
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
        logger.info(f"Successfully loaded configuration from: {config_path}")
        return config if config is not None else {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration file {config_path}: {e}")
        raise

def get_param(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Retrieves a parameter from the config dictionary using a dot-separated key path.
    Example: get_param(config, "root.total_steps")

    Args:
        config (Dict[str, Any]): The configuration dictionary.
        key_path (str): Dot-separated path to the key (e.g., "parent.child.key").
        default (Any, optional): Default value to return if key is not found. Defaults to None.

    Returns:
        Any: The parameter value or the default value.
    """
    keys = key_path.split('.')
    value = config
    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        logger.warning(f"Parameter '{key_path}' not found in config. Using default: {default}")
        return default

def default_config() -> Dict[str, Any]:
    from soilroot import constants # To access default values

    return {
        "paths": {
            "output_dir": "output/root_results",
            "soil_points": None, # Optional xyz text file; a synthetic lattice is used otherwise
            "region_curves": None # Optional YAML with 'attractors' / 'repellers' curves
        },
        "simulation": {
            "random_seed": 42,
            "log_level": "INFO", # DEBUG, INFO, WARNING, ERROR
            "simulation_name": "root_sim"
        },
        "soil": {
            "lattice": "square", # square or triangular
            "size": [20, 20],
            "pitch": 1.0,
            "plane": "xz" # xz = vertical section, xy = ground plane
        },
        "root": {
            "mode": "sectional", # sectional, planar, tree3d
            "anchor": [9.5, 0.0, 19.0],
            "root_type": "single", # none, single, multi
            "branch_n": constants.DEFAULT_BRANCH_N,
            "total_steps": constants.DEFAULT_TOTAL_STEPS,
            "boundary_mode": "prune", # prune or reflect
            "die_back_fraction": 0.0,
            "phase": constants.PLANAR_MAX_PHASE,
            "div_n": 6,
            "scale": 1.0,
            "unit_len": 10.0, # tree3d only
            "toggle_explorer": False,
            "target_radius": None,
            "neighbour_anchors": []
        },
        "environment": {
            "enabled": False,
            "detect_range": 3.0, # world units; planar mode counts soil spacings
            "attractors": [], # closed point lists or {center: [x, y, z], radius: r}
            "repellers": []
        },
        "visualization": {
            "save_plots": True,
            "save_vtp": True,
            "pyvista_screenshot": False
        }
    }

def create_default_config(config_path: str = "config.yaml"):
    """
    Creates a default configuration file if it doesn't exist.
    """
    if not os.path.exists(config_path):
        with open(config_path, 'w') as f:
            yaml.dump(default_config(), f, sort_keys=False, indent=4)
        logger.info(f"Created default configuration file: {config_path}")
    else:
        logger.info(f"Configuration file already exists: {config_path}")
