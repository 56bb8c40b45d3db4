from __future__ import annotations

import argparse
import os
from pathlib import Path
import shutil
import subprocess
import sys
import tempfile

import numpy as np


def _find_mpirun(user_arg: str | None) -> str | None:
    if user_arg:
        return user_arg
    env_val = os.environ.get("MPIRUN", "").strip()
    if env_val:
        return env_val
    return (
        shutil.which("mpiexec.hydra")
        or shutil.which("mpiexec")
        or shutil.which("mpirun")
    )


def _write_inputs(workdir: Path, n_ranks: int) -> tuple[Path, Path]:
    from celldemag.io import save_cells, save_tensor
    from celldemag.testcases import Case, make_case

    arena, tensor = make_case(
        Case(name="mpi_smoke", kind="canted", shape=(4, 3, 2), cell_size=10.0, vacancy_every=7)
    )
    owner = np.arange(arena.n_cells) % int(n_ranks)
    cells = save_cells(str(workdir / "cells.npz"), arena, owner_rank=owner)
    tens = save_tensor(str(workdir / "tensor.npz"), tensor)
    fields = workdir / "out" / "fields.npz"
    cfg = workdir / "dipole.yaml"
    cfg.write_text(
        "\n".join([
            "dipole:",
            "  device: cpu",
            "  block_size: 5",
            "input:",
            f"  cells: {cells}",
            f"  tensor: {tens}",
            "output:",
            f"  fields: {fields}",
            "",
        ]),
        encoding="utf-8",
    )
    return cfg, fields


def _serial_reference(cfg: Path):
    from celldemag.config import load_config
    from celldemag.field import DipoleFieldEvaluator
    from celldemag.io import load_cells, load_tensor

    c = load_config(str(cfg))
    arena = load_cells(c.input.cells)
    ev = DipoleFieldEvaluator(enabled=True, device="cpu", block_size=c.dipole.block_size)
    out = ev.configure(arena, load_tensor(c.input.tensor))
    ev.evaluate()
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="MPI smoke test runner")
    p.add_argument("--n", type=int, default=2, help="MPI ranks (default: 2)")
    p.add_argument("--mpirun", default="", help="Path to mpirun/mpiexec")
    p.add_argument("--timeout", type=int, default=60)
    p.add_argument("--keep", default="", help="Keep inputs/outputs in this directory")
    args = p.parse_args()

    mpirun = _find_mpirun(args.mpirun or None)
    if not mpirun:
        print("[mpi-smoke] mpirun/mpiexec not found", file=sys.stderr)
        return 2

    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root))
    from celldemag.io import load_fields

    with tempfile.TemporaryDirectory(prefix="celldemag_mpi_") as tmp:
        workdir = Path(args.keep) if args.keep else Path(tmp)
        workdir.mkdir(parents=True, exist_ok=True)
        cfg, fields = _write_inputs(workdir, int(args.n))

        cmd = [mpirun, "-n", str(int(args.n)), sys.executable, "-m", "celldemag.main",
               "evaluate", str(cfg), "--mpi", "on"]
        env = os.environ.copy()
        env.setdefault("PYTHONUNBUFFERED", "1")
        print("[mpi-smoke] " + " ".join(cmd), flush=True)
        try:
            res = subprocess.run(cmd, cwd=str(root), env=env, timeout=int(args.timeout))
        except subprocess.TimeoutExpired:
            print("[mpi-smoke] timed out", file=sys.stderr)
            return 3
        if res.returncode != 0:
            return int(res.returncode)

        got, ids = load_fields(str(fields))
        ref = _serial_reference(cfg)
        same = (
            ids.tolist() == list(range(ref.n_cells))
            and np.array_equal(got.total_demag_field, ref.total_demag_field)
            and np.array_equal(got.demag_only_field, ref.demag_only_field)
        )
        print(f"[mpi-smoke] ranks={int(args.n)} matches_serial={same}", flush=True)
        return 0 if same else 4


if __name__ == "__main__":
    raise SystemExit(main())
