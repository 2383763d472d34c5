"""
Case configuration, YAML loading and the driver.

Tests:
1. Config dataclasses reject inconsistent settings
2. load_case_config reads the bundled opposed-jet case (ideal gas, no mechanism file)
3. build_sim wires the gas, flow, inlets and solver settings
4. run_case solves the bundled case and writes the solution, residual, config copy and log
5. Unsupported YAML keys and non-mapping documents are rejected
6. Log level resolution: CLI > FLAME1D_LOG_LEVEL > FLAME1D_DEBUG > default
7. Grid construction (uniform and tanh-stretched)
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest
import yaml

from core.grid import build_grid
from core.logging_utils import resolve_log_level
from core.types import (
    CaseConfig,
    CaseMeta,
    CasePaths,
    FlowConfig,
    GridConfig,
    InletConfig,
    RefineCriteria,
    TimeStepConfig,
)
from driver.run_flame_case import build_sim, load_case_config, main, run_case

CASE = Path(__file__).resolve().parents[1] / "cases" / "counterflow_n2_ideal.yaml"


def _case(tmp_path, **kwargs) -> CaseConfig:
    base = dict(
        case=CaseMeta(id="t"),
        paths=CasePaths(mechanism="ideal", output_dir=tmp_path),
        flow=FlowConfig(),
        grid=GridConfig(n_points=5, length=0.01),
        inlets=[InletConfig(side="left", temperature=300.0, composition="N2:1", mdot=0.1)],
    )
    base.update(kwargs)
    return CaseConfig(**base)


# =============================================================================
# Dataclass validation
# =============================================================================
def test_config_validation(tmp_path):
    assert _case(tmp_path).refine_grid is True
    with pytest.raises(ValueError):
        _case(tmp_path, flow=FlowConfig(flow_type="free"))
    with pytest.raises(ValueError):
        _case(tmp_path, fixed_temperature=900.0)
    with pytest.raises(ValueError):
        _case(tmp_path, flow=FlowConfig(flow_type="spray"))
    with pytest.raises(ValueError):
        _case(tmp_path, initial_profile="tanh")
    with pytest.raises(ValueError):
        _case(tmp_path, inlets=[
            InletConfig(side="left", temperature=300.0, composition="N2:1"),
            InletConfig(side="left", temperature=300.0, composition="N2:1"),
        ])

    with pytest.raises(ValueError):
        FlowConfig(flow_type="burner")
    with pytest.raises(ValueError):
        FlowConfig(soret=True)
    with pytest.raises(ValueError):
        InletConfig(side="left", temperature=300.0, composition="N2:1", mdot=1.0, velocity=1.0)
    with pytest.raises(ValueError):
        GridConfig(n_points=2, length=0.01)
    with pytest.raises(ValueError):
        RefineCriteria(slope=0.1, prune=0.2)
    with pytest.raises(ValueError):
        TimeStepConfig(steps=())
    with pytest.raises(TypeError):
        CasePaths(mechanism="ideal", output_dir="out")


# =============================================================================
# YAML loading and the driver
# =============================================================================
def test_load_bundled_case():
    cfg, gas_raw = load_case_config(CASE)
    assert cfg.case.id == "counterflow_n2_ideal"
    assert cfg.paths.mechanism == "ideal"
    assert cfg.paths.output_dir == CASE.parent / "out"
    assert gas_raw["ideal_species"] == {"N2": 28.014}
    assert [inlet.side for inlet in cfg.inlets] == ["left", "right"]
    assert cfg.solver.timestep.steps == (2, 5, 10, 20)
    assert cfg.solver.refine.ratio == 3.0
    assert cfg.solver.continuation.parameter == 100.0
    assert cfg.refine_grid is False


def test_build_sim_from_case():
    cfg, gas_raw = load_case_config(CASE)
    sim = build_sim(cfg, gas_raw)
    flow = sim.domain(1)
    assert sim.n_domains == 3
    assert flow.n_points == 6
    assert sim.system_size == 6 * flow.n_components + 1
    assert sim.continuation_parameter == 100.0
    assert sim.domain(0).mdot == pytest.approx(2.27597)
    assert sim.get_refine_criteria(1) == (3.0, 0.1, 0.2, cfg.solver.refine.prune)
    assert np.all(np.isfinite(sim.eval()))


def test_run_case_writes_outputs(tmp_path):
    result = run_case(CASE, out_dir=tmp_path)
    assert result is not None and result.success, result.history
    case_dir = tmp_path / "counterflow_n2_ideal"
    for name in ("solution.npz", "solution.mapping.json", "residual.npz", "config.yaml", "run.log"):
        assert (case_dir / name).exists(), name
    handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
    assert all(Path(h.baseFilename).parent != case_dir for h in handlers)


def test_main_dry_run(tmp_path):
    assert main([str(CASE), "--dry-run", "--out", str(tmp_path), "--log-level", "WARNING"]) == 0
    assert (tmp_path / "counterflow_n2_ideal" / "config.yaml").exists()
    assert not (tmp_path / "counterflow_n2_ideal" / "solution.npz").exists()


def test_yaml_errors(tmp_path):
    raw = yaml.safe_load(CASE.read_text())
    raw["solver"]["multigrid"] = True
    bad = tmp_path / "bad.yaml"
    bad.write_text(yaml.safe_dump(raw))
    with pytest.raises(ValueError):
        load_case_config(bad)

    listing = tmp_path / "list.yaml"
    listing.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_case_config(listing)


def test_yaml_initial_profiles(tmp_path):
    raw = yaml.safe_load(CASE.read_text())
    raw["initial"] = {"profiles": {"spread_rate": {"pos": [0.0, 1.0], "values": [80.0, 120.0]}}}
    path = tmp_path / "profiles.yaml"
    path.write_text(yaml.safe_dump(raw))
    cfg, gas_raw = load_case_config(path)
    assert cfg.initial_profiles["spread_rate"] == ((0.0, 1.0), (80.0, 120.0))
    sim = build_sim(cfg, gas_raw)
    assert sim.value(1, "spread_rate", 0) == pytest.approx(80.0)
    assert sim.value(1, "spread_rate", 5) == pytest.approx(120.0)


# =============================================================================
# Logging and grids
# =============================================================================
def test_resolve_log_level(monkeypatch):
    monkeypatch.delenv("FLAME1D_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FLAME1D_DEBUG", raising=False)
    assert resolve_log_level(None) == logging.INFO
    monkeypatch.setenv("FLAME1D_DEBUG", "1")
    assert resolve_log_level(None) == logging.DEBUG
    monkeypatch.setenv("FLAME1D_LOG_LEVEL", "WARNING")
    assert resolve_log_level(None) == logging.WARNING
    assert resolve_log_level("error") == logging.ERROR
    assert resolve_log_level("15") == 15


def test_build_grid():
    z = build_grid(GridConfig(n_points=6, length=0.02, z0=0.01))
    np.testing.assert_allclose(z, np.linspace(0.01, 0.03, 6))

    z = build_grid(GridConfig(n_points=11, length=0.02, method="tanh", beta=2.0))
    assert z[0] == 0.0 and z[-1] == 0.02
    assert np.all(np.diff(z) > 0.0)
    dz = np.diff(z)
    assert dz[0] < dz[5] and dz[-1] < dz[5]
