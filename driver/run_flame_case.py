"""
Driver to build and solve a 1D flame case from YAML.

Responsibilities:
- Load CaseConfig (and the gas block) from YAML.
- Build the gas collaborator, the flow domain, its boundaries and the Sim1D orchestrator.
- Apply initial profiles and, for free flames, the fixed-temperature anchor.
- Solve, log the outcome and save the solution (and residual) next to the case output.
"""

from __future__ import annotations

import argparse
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from assembly.residual_flow import FlowDomain
from core.grid import build_grid
from core.logging_utils import add_file_handler, resolve_log_level, setup_logging
from core.types import (
    CaseConfig,
    CaseMeta,
    CasePaths,
    ContinuationConfig,
    FlowConfig,
    GridConfig,
    InletConfig,
    NewtonConfig,
    RefineCriteria,
    SolveResult,
    SolverConfig,
    SprayConfig,
    TimeStepConfig,
    as_float_tuple,
)
from physics.boundaries import Inlet, Outlet, SprayInlet
from physics.spray import SprayModel
from properties.gas import build_gas_model
from solvers.sim1d import Sim1D

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Config loading
# -----------------------------------------------------------------------------
def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _check_keys(block: str, raw: Mapping[str, Any], allowed: Sequence[str]) -> None:
    unknown = set(raw.keys()) - set(allowed)
    if unknown:
        raise ValueError(f"Unsupported keys in '{block}': {sorted(unknown)}")


def _load_solver_config(raw: Optional[Mapping[str, Any]]) -> SolverConfig:
    raw = dict(raw or {})
    _check_keys("solver", raw, ("newton", "timestep", "refine", "continuation", "max_refine_failures"))
    ts_raw = dict(raw.get("timestep", {}) or {})
    if "steps" in ts_raw:
        ts_raw["steps"] = tuple(int(n) for n in ts_raw["steps"])
    return SolverConfig(
        newton=NewtonConfig(**(raw.get("newton", {}) or {})),
        timestep=TimeStepConfig(**ts_raw),
        refine=RefineCriteria(**(raw.get("refine", {}) or {})),
        continuation=ContinuationConfig(**(raw.get("continuation", {}) or {})),
        max_refine_failures=int(raw.get("max_refine_failures", 2)),
    )


def _load_initial(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    raw = dict(raw or {})
    _check_keys("initial", raw, ("temperature", "profile", "width", "profiles"))
    profiles = {}
    for comp, entry in (raw.get("profiles", {}) or {}).items():
        profiles[str(comp)] = (as_float_tuple(entry["pos"]), as_float_tuple(entry["values"]))
    temperature = raw.get("temperature")
    return {
        "initial_temperature": None if temperature is None else float(temperature),
        "initial_profile": str(raw.get("profile", "linear")),
        "initial_width": float(raw.get("width", 0.2)),
        "initial_profiles": profiles,
    }


def load_case_config(cfg_path: str | Path) -> Tuple[CaseConfig, Dict[str, Any]]:
    """Load YAML into CaseConfig; the second item is the raw 'gas' block (ideal-gas species)."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file))
    if not isinstance(raw, Mapping):
        raise ValueError(f"{cfg_file}: top level must be a mapping")
    base = cfg_file.parent

    case_cfg = CaseMeta(**raw["case"])
    paths_raw = raw["paths"]
    mechanism = str(paths_raw["mechanism"])
    if mechanism != "ideal" and not Path(mechanism).is_absolute() and (base / mechanism).exists():
        mechanism = str((base / mechanism).resolve())
    paths_cfg = CasePaths(
        mechanism=mechanism,
        output_dir=_resolve_path(base, paths_raw.get("output_dir", "out")),
        phase=paths_raw.get("phase"),
    )

    spray_cfg = None
    if raw.get("spray") is not None:
        spray_raw = dict(raw["spray"])
        if "av_coefficients" in spray_raw:
            spray_raw["av_coefficients"] = as_float_tuple(spray_raw["av_coefficients"])
        spray_cfg = SprayConfig(**spray_raw)

    cfg = CaseConfig(
        case=case_cfg,
        paths=paths_cfg,
        flow=FlowConfig(**(raw.get("flow", {}) or {})),
        grid=GridConfig(**raw["grid"]),
        inlets=[InletConfig(**inlet) for inlet in (raw.get("inlets") or [])],
        solver=_load_solver_config(raw.get("solver")),
        spray=spray_cfg,
        fixed_temperature=raw.get("fixed_temperature"),
        refine_grid=bool(raw.get("refine_grid", True)),
        **_load_initial(raw.get("initial")),
    )
    return cfg, dict(raw.get("gas", {}) or {})


# -----------------------------------------------------------------------------
# Case assembly
# -----------------------------------------------------------------------------
def _build_boundary(cfg: CaseConfig, side: str):
    inlet_cfg = next((inlet for inlet in cfg.inlets if inlet.side == side), None)
    if inlet_cfg is None:
        return Outlet(name=f"outlet_{side}")
    kwargs = dict(
        temperature=inlet_cfg.temperature,
        composition=inlet_cfg.composition,
        mdot=inlet_cfg.mdot,
        velocity=inlet_cfg.velocity,
        spread_rate=inlet_cfg.spread_rate,
    )
    if inlet_cfg.droplets is not None:
        return SprayInlet(name=f"inlet_{side}", droplets=inlet_cfg.droplets, **kwargs)
    return Inlet(name=f"inlet_{side}", **kwargs)


def build_sim(cfg: CaseConfig, gas_raw: Optional[Mapping[str, Any]] = None) -> Sim1D:
    """Gas model -> flow domain -> boundaries -> Sim1D with initial profiles applied."""
    gas_raw = dict(gas_raw or {})
    gas_model = build_gas_model(
        cfg.paths.mechanism,
        cfg.flow,
        phase=cfg.paths.phase,
        ideal_species=gas_raw.get("ideal_species"),
        ideal_options=gas_raw.get("ideal_options"),
    )
    spray = SprayModel.from_config(cfg.spray) if cfg.flow.flow_type == "spray" else None
    flow = FlowDomain(
        gas_model.gas,
        build_grid(cfg.grid),
        flow_type=cfg.flow.flow_type,
        pressure=cfg.flow.pressure,
        transport_model=cfg.flow.transport_model,
        soret=cfg.flow.soret,
        radiation=cfg.flow.radiation,
        emissivity_left=cfg.flow.emissivity_left,
        emissivity_right=cfg.flow.emissivity_right,
        spray=spray,
        energy=cfg.flow.energy,
    )
    left = _build_boundary(cfg, "left")
    right = _build_boundary(cfg, "right")
    sim = Sim1D([left, flow, right], cfg.solver)

    sim.reset_initial_guess(
        temperature=cfg.initial_temperature, profile=cfg.initial_profile, width=cfg.initial_width
    )
    for comp, (pos, values) in cfg.initial_profiles.items():
        sim.set_initial_guess(comp, pos, values)
    if cfg.fixed_temperature is not None:
        n_new = sim.set_fixed_temperature(float(cfg.fixed_temperature))
        logger.info("Fixed temperature %.6g K at z=%.6g (%d point(s) inserted)",
                    sim.fixed_temperature, sim.fixed_temperature_location, n_new)
    return sim


def _prepare_output_dir(cfg: CaseConfig, cfg_path: str | Path) -> Path:
    """Create <output_dir>/<case id> and copy the case yaml into it."""
    out_dir = Path(cfg.paths.output_dir) / cfg.case.id
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copy2(cfg_path, out_dir / "config.yaml")
    except OSError as exc:
        logger.warning("Failed to copy cfg to output dir: %s", exc)
    return out_dir


def run_case(
    cfg_path: str | Path,
    *,
    refine_grid: Optional[bool] = None,
    out_dir: Optional[str | Path] = None,
    dry_run: bool = False,
) -> SolveResult | None:
    cfg, gas_raw = load_case_config(cfg_path)
    if out_dir is not None:
        cfg.paths.output_dir = Path(out_dir).expanduser().resolve()
    case_dir = _prepare_output_dir(cfg, cfg_path)
    handler = add_file_handler(case_dir / "run.log", level=logging.getLogger().level)
    try:
        return _solve_case(cfg, gas_raw, case_dir, refine_grid=refine_grid, dry_run=dry_run)
    finally:
        logging.getLogger().removeHandler(handler)
        handler.close()


def _solve_case(
    cfg: CaseConfig,
    gas_raw: Dict[str, Any],
    case_dir: Path,
    *,
    refine_grid: Optional[bool],
    dry_run: bool,
) -> SolveResult | None:
    logger.info("Case '%s': flow_type=%s grid=%d points, output=%s",
                cfg.case.id, cfg.flow.flow_type, cfg.grid.n_points, case_dir)

    sim = build_sim(cfg, gas_raw)
    if dry_run:
        logger.info("Dry run: case built (%d unknowns); skipping solve.", sim.system_size)
        return None

    do_refine = cfg.refine_grid if refine_grid is None else bool(refine_grid)
    result = sim.solve(refine_grid=do_refine)
    if result.success:
        logger.info("Solve succeeded: newton=%d timesteps=%d refine=%d grid=%s",
                    result.n_newton_solves, result.n_timesteps, result.n_refine_passes, result.grid_sizes)
        sim.show_solution()
        sim.save(case_dir, "solution", desc=cfg.case.title)
        sim.save_residual(case_dir, "residual", desc=f"residual of {cfg.case.id}")
    else:
        logger.error("Solve failed: %s", result.reason)
        for line in result.history:
            logger.info("  %s", line)
        sim.save(case_dir, "last_state", desc=f"failed solve: {result.reason}")
    return result


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Solve a 1D flame case.")
    parser.add_argument("case_yaml", help="Path to case YAML file.")
    parser.add_argument("--no-refine", action="store_true", help="Disable grid refinement.")
    parser.add_argument("--log-level", default=None, help="Log level name or number (default: env or INFO).")
    parser.add_argument("--out", default=None, help="Override paths.output_dir.")
    parser.add_argument("--dry-run", action="store_true", help="Build the case only; skip the solve.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    level = resolve_log_level(args.log_level)
    setup_logging(level=level)
    result = run_case(
        args.case_yaml,
        refine_grid=False if args.no_refine else None,
        out_dir=args.out,
        dry_run=args.dry_run,
    )
    if result is None:
        return 0
    return 0 if result.success else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
