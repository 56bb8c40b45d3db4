from __future__ import annotations
from dataclasses import dataclass
import numpy as np
from .backend import ComputeBackend, resolve_backend
from .field import DipoleFieldEvaluator
from .golden import GoldenFields, load as load_golden, save as save_golden
from .testcases import Case, default_cases, make_case

@dataclass
class GoldenCheckResult:
    case: str
    ok: bool
    max_dH_total: float
    max_dH_demag: float
    details: dict

def evaluate_case(case: Case, *, backend: ComputeBackend | None = None, block_size: int = 256):
    """(arena, output) after one evaluation of a verification case."""
    arena, tensor = make_case(case)
    ev = DipoleFieldEvaluator(
        enabled=True,
        backend=backend if backend is not None else resolve_backend("cpu"),
        block_size=block_size,
    )
    out = ev.configure(arena, tensor)
    ev.evaluate()
    return arena, out

def _evaluated_ids(arena) -> np.ndarray:
    _lc, ids = arena.local_populated()
    return ids

def generate_golden(*, out_path: str, cases: list[Case] | None = None) -> str:
    if cases is None:
        cases = default_cases()
    series = []
    for case in cases:
        arena, out = evaluate_case(case)
        ids = _evaluated_ids(arena)
        series.append(GoldenFields(
            case=case.name,
            cell_ids=[int(i) for i in ids],
            total=out.total_demag_field[ids].tolist(),
            demag_only=out.demag_only_field[ids].tolist(),
        ))
    save_golden(out_path, series)
    return out_path

def check_against_golden(*, golden_path: str, tol: float = 1e-9,
                         backend: ComputeBackend | None = None,
                         block_size: int = 256) -> list[GoldenCheckResult]:
    """Re-evaluate known cases and compare with the golden file (relative to max |H|)."""
    golden = {s.case: s for s in load_golden(golden_path)}
    results = []
    for case in default_cases():
        if case.name not in golden:
            continue
        g = golden[case.name]
        arena, out = evaluate_case(case, backend=backend, block_size=block_size)
        ids = _evaluated_ids(arena)
        same_ids = [int(i) for i in ids] == list(g.cell_ids)
        if not same_ids:
            results.append(GoldenCheckResult(
                case=case.name, ok=False, max_dH_total=float("inf"), max_dH_demag=float("inf"),
                details={"reason": "evaluated cell ids differ from golden"},
            ))
            continue
        gt = np.asarray(g.total, dtype=float).reshape(-1, 3)
        gd = np.asarray(g.demag_only, dtype=float).reshape(-1, 3)
        scale = max(1.0, float(np.abs(gt).max()) if gt.size else 0.0)
        dt = np.abs(out.total_demag_field[ids] - gt)
        dd = np.abs(out.demag_only_field[ids] - gd)
        max_dt = float(dt.max()) if dt.size else 0.0
        max_dd = float(dd.max()) if dd.size else 0.0
        ok = (max_dt <= tol * scale) and (max_dd <= tol * scale)
        results.append(GoldenCheckResult(
            case=case.name, ok=bool(ok), max_dH_total=max_dt, max_dH_demag=max_dd,
            details={"n_cells": len(g.cell_ids), "scale": scale},
        ))
    return results
