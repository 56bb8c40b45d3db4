from __future__ import annotations

import argparse
from typing import Callable


def build_parser(
    *,
    cmd_evaluate: Callable,
    cmd_golden_gen: Callable,
    cmd_golden_check: Callable,
) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="celldemag")
    sub = p.add_subparsers(dest="cmd", required=True)

    pe = sub.add_parser("evaluate")
    pe.add_argument("config", help="YAML config (dipole/input/output sections)")
    pe.add_argument("--device", choices=["auto", "cpu", "cuda"], default="", help="Compute device override")
    pe.add_argument("--disable", action="store_true", help="Force the dipole field off (no-op evaluation)")
    pe.add_argument("--out", default="", help="Override output.fields path")
    pe.add_argument(
        "--mpi",
        choices=["auto", "on", "off"],
        default="auto",
        help="auto: use MPI when started by mpirun/mpiexec; on: require it; off: single rank",
    )
    pe.set_defaults(func=cmd_evaluate)

    pg = sub.add_parser("golden-gen")
    pg.add_argument("--out", default="tests/golden/dipole_fields.json")
    pg.add_argument("--case", action="append", default=[])
    pg.set_defaults(func=cmd_golden_gen)

    pc = sub.add_parser("golden-check")
    pc.add_argument("--golden", default="tests/golden/dipole_fields.json")
    pc.add_argument("--tol", type=float, default=1e-9)
    pc.add_argument("--device", choices=["auto", "cpu", "cuda"], default="cpu")
    pc.add_argument("--block-size", type=int, default=256)
    pc.add_argument("--plots", default="")  # dir for pngs
    pc.set_defaults(func=cmd_golden_check)

    return p
