# tests/test_io_utils.py
import pytest
import numpy as np
import pandas as pd
import pyvista as pv
import os
import yaml

from soilroot import io_utils
from soilroot.geometry import Polyline

@pytest.fixture(scope="module") # Use module scope for tmp_path to reduce overhead
def test_output_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("io_test_data")

@pytest.fixture
def sample_lines():
    return {
        "main": [Polyline([[0, 0, 0], [0, -1, 0], [0, -2, 0]]), Polyline.line([0, -2, 0], [1, -3, 0])],
        "side": [Polyline.line([0, -1, 0], [1, -1.5, 0])],
    }

# --- Soil point loading ---
@pytest.fixture
def sample_points_file(test_output_dir):
    filepath = test_output_dir / "soil_points.txt"
    content = (
        "# x y z\n"
        "0 0 0\n"
        "1.5 2.0 0.5\n"
        "3,4\n"            # comma separated, 2D
        "1 2 3 4\n"        # malformed
        "\n"
    )
    filepath.write_text(content)
    return str(filepath)

def test_load_soil_points_txt(sample_points_file, caplog):
    pts = io_utils.load_soil_points_txt(sample_points_file)
    assert pts.shape == (3, 3)
    assert np.allclose(pts[2], [3, 4, 0])
    assert "Skipping malformed line" in caplog.text

def test_load_soil_points_txt_non_existent(caplog):
    assert io_utils.load_soil_points_txt("non_existent_points.txt") is None
    assert "Soil point file not found" in caplog.text

def test_load_soil_points_txt_only_comments(test_output_dir):
    filepath = test_output_dir / "comments_only.txt"
    filepath.write_text("# nothing here\n")
    assert io_utils.load_soil_points_txt(str(filepath)) is None

# --- Region curves ---
def test_load_region_curves_yaml(test_output_dir):
    filepath = test_output_dir / "regions.yaml"
    data = {"attractors": [[[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 0, 0]]],
            "repellers": [{"center": [5, 5, 0], "radius": 1.0}]}
    with open(filepath, "w") as f:
        yaml.dump(data, f)
    regions = io_utils.load_region_curves_yaml(str(filepath))
    assert len(regions["attractors"]) == 1
    assert regions["repellers"][0]["radius"] == 1.0

def test_load_region_curves_yaml_missing_keys(test_output_dir):
    filepath = test_output_dir / "regions_empty.yaml"
    filepath.write_text("other: 1\n")
    assert io_utils.load_region_curves_yaml(str(filepath)) == {"attractors": [], "repellers": []}

# --- VTP export ---
def test_save_root_lines_vtp(test_output_dir, sample_lines):
    filepath = str(test_output_dir / "main_lines.vtp")
    io_utils.save_root_lines_vtp(sample_lines["main"], filepath, kind="main")
    assert os.path.exists(filepath)
    mesh = pv.read(filepath)
    assert mesh.n_points == 5
    assert mesh.n_cells == 2
    assert np.allclose(mesh.cell_data["length"], [2.0, np.sqrt(2.0)])
    assert "kind_id" not in mesh.cell_data
    assert "kind" in mesh.field_data

def test_save_root_branches_vtp(test_output_dir, sample_lines):
    filepath = str(test_output_dir / "branches.vtp")
    io_utils.save_root_branches_vtp(sample_lines, filepath)
    mesh = pv.read(filepath)
    assert mesh.n_cells == 3
    assert list(mesh.cell_data["kind_id"]) == [0, 0, 1]

# --- CSV export ---
def test_save_root_lines_csv(test_output_dir, sample_lines):
    filepath = str(test_output_dir / "lines.csv")
    io_utils.save_root_lines_csv(sample_lines, filepath)
    df = pd.read_csv(filepath)
    assert len(df) == 3
    assert list(df["kind"]) == ["main", "main", "side"]
    assert df.loc[0, "n_points"] == 3
    assert df.loc[0, "length"] == pytest.approx(2.0)
    assert df.loc[1, "end_y"] == pytest.approx(-3.0)

def test_root_lines_dataframe_empty():
    df = io_utils.root_lines_dataframe({})
    assert df.empty
    assert "length" in df.columns

# --- Parameters ---
def test_save_simulation_parameters(test_output_dir):
    filepath = test_output_dir / "params.yaml"
    config = {"root": {"mode": "sectional", "branch_n": 3}, "simulation": {"random_seed": 1}}
    io_utils.save_simulation_parameters(config, str(filepath))
    with open(filepath) as f:
        assert yaml.safe_load(f) == config

def test_save_simulation_parameters_bad_path(test_output_dir):
    with pytest.raises(OSError):
        io_utils.save_simulation_parameters({}, str(test_output_dir / "missing_dir" / "params.yaml"))
