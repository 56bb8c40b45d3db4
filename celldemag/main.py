from __future__ import annotations

import numpy as np

from .backend import describe_backend, resolve_backend
from .cli_parser import build_parser
from .comm import allgather_magnetization, gather_fields, init_comm, local_ids_from_owner
from .config import Config, load_config
from .field import DipoleFieldEvaluator
from .io import load_cells, load_owner_rank, load_tensor, save_fields
from .trace import DipoleTraceLogger


def _rank_path(path: str, rank: int) -> str:
    # per-rank inputs/traces: "tensor_{rank}.npz"
    return str(path).replace("{rank}", str(int(rank)))


def run_evaluate(
    cfg: Config,
    comm,
    *,
    device: str = "",
    disable: bool = False,
    out_path: str = "",
) -> str | None:
    """One distributed field evaluation; returns the fields path on rank 0, else None.

    Every rank loads the global cell state, keeps the cells `owner_rank`
    assigns to it, all-gathers the owned magnetizations, evaluates its own
    cells and sends its rows to rank 0, which alone writes the outputs.
    """
    rank = int(comm.Get_rank())
    size = int(comm.Get_size())
    requested_device = str(device).strip().lower() if device else cfg.dipole.device
    backend = resolve_backend(requested_device)
    print(describe_backend(backend, rank=rank if size > 1 else None), flush=True)

    cells_path = _rank_path(cfg.input.cells, rank)
    arena = load_cells(cells_path)
    if size > 1:
        owner = load_owner_rank(cells_path)
        if owner is None:
            raise ValueError(
                f"{cells_path}: owner_rank is required to split cells over {size} ranks"
            )
        if owner.shape != (arena.n_cells,):
            raise ValueError(f"owner_rank must have shape ({arena.n_cells},), got {owner.shape}")
        arena = arena.with_local_cells(local_ids_from_owner(owner, rank, size))
    tensor = load_tensor(_rank_path(cfg.input.tensor, rank))
    if tensor.n_local != arena.n_local and tensor.n_local == tensor.n_cells == arena.n_cells:
        tensor = tensor.local_rows(arena.local_cell_ids)

    if size > 1:
        own = arena.magnetization[arena.local_cell_ids]
        arena = arena.with_magnetization(allgather_magnetization(comm, arena, own))

    trace = DipoleTraceLogger(_rank_path(cfg.output.trace, rank)) if cfg.output.trace else None
    enabled = bool(cfg.dipole.enabled) and not bool(disable)
    ev = DipoleFieldEvaluator(
        enabled=enabled,
        backend=backend,
        block_size=cfg.dipole.block_size,
        debug=cfg.dipole.debug,
        rank=rank,
        trace=trace,
    )
    try:
        output = ev.configure(arena, tensor)
        stats = ev.evaluate()
    finally:
        if trace is not None:
            trace.close()

    n_evaluated = 0 if stats is None else int(stats.n_evaluated)
    if size > 1:
        output = gather_fields(comm, arena, output, root=0)
        counts = comm.gather(n_evaluated, root=0)
        if rank != 0:
            return None
        n_evaluated = int(sum(counts))
        # every cell is owned by some rank, so rank 0 now holds all rows
        arena = arena.with_local_cells(np.arange(arena.n_cells, dtype=np.int64))

    if stats is None:
        print("[evaluate] dipole field disabled; outputs left unchanged", flush=True)
    else:
        print(
            f"[evaluate] cells={arena.n_cells} ranks={size} local={stats.n_local} "
            f"evaluated={n_evaluated} sources={stats.n_sources} device={stats.device} "
            f"time={stats.wall_time:.3e}s",
            flush=True,
        )
    return save_fields(
        out_path or cfg.output.fields,
        arena,
        output,
        write_output_manifest=cfg.output.manifest,
        n_evaluated=n_evaluated,
        device=backend.device,
    )


def _cmd_evaluate(args) -> None:
    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"[evaluate] invalid config {args.config!r}: {exc}")

    try:
        runtime = init_comm(args.mpi)
    except (RuntimeError, ValueError) as exc:
        raise SystemExit(f"[evaluate] {exc}")
    try:
        path = run_evaluate(
            cfg,
            runtime.comm,
            device=args.device,
            disable=bool(args.disable),
            out_path=args.out,
        )
    except OSError as exc:
        raise SystemExit(f"[evaluate] failed to load inputs: {exc}")
    except ValueError as exc:
        raise SystemExit(f"[evaluate] precondition violated: {exc}")
    finally:
        runtime.close()
    if path is not None:
        print(f"[evaluate] wrote {path}", flush=True)
    raise SystemExit(0)


def _cmd_golden_gen(args) -> None:
    from .testcases import default_cases
    from .verify_golden import generate_golden

    cases = default_cases()
    if args.case:
        wanted = set(args.case)
        cases = [c for c in cases if c.name in wanted]
        if not cases:
            raise SystemExit(
                f"Unknown cases: {args.case}. Known: {[c.name for c in default_cases()]}"
            )
    out = generate_golden(out_path=args.out, cases=cases)
    print(f"[golden-gen] wrote {out}")
    raise SystemExit(0)


def _cmd_golden_check(args) -> None:
    from .verify_golden import check_against_golden, evaluate_case

    backend = resolve_backend(args.device)
    print(describe_backend(backend), flush=True)
    try:
        res = check_against_golden(
            golden_path=args.golden,
            tol=float(args.tol),
            backend=backend,
            block_size=int(args.block_size),
        )
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise SystemExit(f"[golden-check] cannot read golden file {args.golden!r}: {exc}")
    if not res:
        raise SystemExit(f"[golden-check] no known cases in {args.golden}")
    ok = True
    for r in res:
        print(
            f"[golden-check {r.case}] ok={r.ok} max|dH_total|={r.max_dH_total:.3e} "
            f"max|dH_demag|={r.max_dH_demag:.3e}"
        )
        ok = ok and r.ok
    if args.plots:
        from .testcases import default_cases
        from .verify_plots import plot_field_profile

        checked = {r.case for r in res}
        for case in default_cases():
            if case.name not in checked:
                continue
            arena, out = evaluate_case(case, backend=backend, block_size=int(args.block_size))
            _lc, ids = arena.local_populated()
            plot_field_profile(case.name, ids, out.total_demag_field[ids], out.demag_only_field[ids], args.plots)
        print(f"[golden-check] plots -> {args.plots}")
    raise SystemExit(0 if ok else 2)


def _build_parser():
    return build_parser(
        cmd_evaluate=_cmd_evaluate,
        cmd_golden_gen=_cmd_golden_gen,
        cmd_golden_check=_cmd_golden_check,
    )


def main(argv=None) -> None:
    p = _build_parser()
    args = p.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        raise SystemExit(f"unsupported cmd: {getattr(args, 'cmd', None)}")
    func(args)


if __name__ == "__main__":
    main()
