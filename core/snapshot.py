"""
Solution persistence:
- save_snapshot: write <dir>/<id>.npz (state vector + per-domain grids) and
  <dir>/<id>.mapping.json (domain/component layout, description, metadata).
- load_snapshot: read both back and check the npz against the mapping.
- build_mapping: layout description used to check compatibility on restore.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

from core.layout import SolutionLayout
from core.types import SolutionSnapshot

logger = logging.getLogger(__name__)

MAPPING_VERSION = 1


def build_mapping(
    sol: SolutionLayout,
    component_names: Sequence[Sequence[str]],
    domain_types: Sequence[str],
) -> Dict[str, Any]:
    """Describe how to unpack the state vector into per-domain (points, components) blocks."""
    domains: List[Dict[str, Any]] = []
    for ds, names, dtype in zip(sol.domains, component_names, domain_types):
        domains.append(
            {
                "name": ds.name,
                "type": dtype,
                "offset": int(ds.start),
                "n_points": int(ds.n_points),
                "components": list(names),
            }
        )
    return {
        "version": MAPPING_VERSION,
        "dtype": "float64",
        "ordering": "domain-point-component",
        "size": int(sol.size),
        "continuation_index": int(sol.continuation_index),
        "domains": domains,
    }


def _paths(directory: Path, sol_id: str) -> Tuple[Path, Path]:
    if not sol_id or any(ch in sol_id for ch in "/\\"):
        raise ValueError(f"invalid solution id {sol_id!r}")
    return directory / f"{sol_id}.npz", directory / f"{sol_id}.mapping.json"


def save_snapshot(
    directory: Path | str,
    sol_id: str,
    snapshot: SolutionSnapshot,
    mapping: Dict[str, Any],
    *,
    desc: str = "",
) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    npz_path, map_path = _paths(directory, sol_id)

    if snapshot.x.size != int(mapping["size"]):
        raise ValueError(
            f"snapshot size {snapshot.x.size} does not match mapping size {mapping['size']}"
        )
    arrays = {"x": np.asarray(snapshot.x, dtype=np.float64)}
    for i, z in enumerate(snapshot.grids):
        arrays[f"grid_{i:03d}"] = np.asarray(z, dtype=np.float64)
    np.savez(npz_path, **arrays)

    payload = dict(mapping)
    payload["id"] = sol_id
    payload["desc"] = desc
    payload["saved_at"] = datetime.now().isoformat(timespec="seconds")
    payload["meta"] = {k: v for k, v in snapshot.meta.items() if _json_scalar(v)}
    with open(map_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)

    logger.info("Solution '%s' saved to %s", sol_id, npz_path)
    return npz_path


def load_snapshot(directory: Path | str, sol_id: str) -> Tuple[SolutionSnapshot, Dict[str, Any]]:
    directory = Path(directory)
    npz_path, map_path = _paths(directory, sol_id)
    if not npz_path.exists() or not map_path.exists():
        raise FileNotFoundError(f"solution '{sol_id}' not found in {directory}")

    with open(map_path, "r", encoding="utf-8") as fh:
        mapping = json.load(fh)
    if int(mapping.get("version", -1)) != MAPPING_VERSION:
        raise ValueError(f"unsupported mapping version {mapping.get('version')!r}")

    with np.load(npz_path) as data:
        x = np.array(data["x"], dtype=np.float64)
        grids = [np.array(data[f"grid_{i:03d}"], dtype=np.float64) for i in range(len(mapping["domains"]))]

    if x.size != int(mapping["size"]):
        raise ValueError(f"{npz_path}: state size {x.size} != mapping size {mapping['size']}")
    for dom, z in zip(mapping["domains"], grids):
        if z.size != int(dom["n_points"]):
            raise ValueError(
                f"{npz_path}: grid of domain '{dom['name']}' has {z.size} points, mapping says {dom['n_points']}"
            )
    snap = SolutionSnapshot(x=x, grids=grids, meta=dict(mapping.get("meta", {})))
    return snap, mapping


def _json_scalar(v: Any) -> bool:
    return isinstance(v, (str, int, float, bool)) or v is None
