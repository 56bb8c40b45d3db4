from __future__ import annotations

import time
import warnings
from dataclasses import dataclass

import numpy as np

from .backend import ComputeBackend, resolve_backend, to_numpy
from .cells import CellArena
from .constants import (
    DEMAG_ONLY_SELF_WEIGHT,
    DIPOLE_FIELD_PREFACTOR,
    INV_BOHR_MAGNETON,
    self_demag_factor,
)
from .tensor_store import COMPONENTS, InteractionTensorStore, contract_components


@dataclass
class DipoleFieldOutput:
    """Per-cell output buffers, indexed by global cell id.

    Owned by the field-accumulation layer; the evaluator only overwrites the
    rows of populated local cells.
    """

    total_demag_field: np.ndarray
    demag_only_field: np.ndarray

    @classmethod
    def allocate(cls, n_cells: int) -> "DipoleFieldOutput":
        n = int(n_cells)
        if n < 0:
            raise ValueError("n_cells must be >= 0")
        return cls(
            total_demag_field=np.zeros((n, 3), dtype=np.float64),
            demag_only_field=np.zeros((n, 3), dtype=np.float64),
        )

    @property
    def n_cells(self) -> int:
        return int(self.total_demag_field.shape[0])

    def resize(self, n_cells: int) -> None:
        n = int(n_cells)
        if n == self.n_cells:
            return
        keep = min(n, self.n_cells)
        tot = np.zeros((n, 3), dtype=np.float64)
        dem = np.zeros((n, 3), dtype=np.float64)
        tot[:keep] = self.total_demag_field[:keep]
        dem[:keep] = self.demag_only_field[:keep]
        self.total_demag_field = tot
        self.demag_only_field = dem

    def copy(self) -> "DipoleFieldOutput":
        return DipoleFieldOutput(
            total_demag_field=self.total_demag_field.copy(),
            demag_only_field=self.demag_only_field.copy(),
        )

    def validate(self, n_cells: int) -> None:
        want = (int(n_cells), 3)
        if self.total_demag_field.shape != want or self.demag_only_field.shape != want:
            raise ValueError(
                f"output buffers must have shape {want}, got "
                f"{self.total_demag_field.shape} and {self.demag_only_field.shape}"
            )


@dataclass(frozen=True)
class EvaluationStats:
    call_id: int
    n_local: int
    n_evaluated: int
    n_sources: int
    device: str
    wall_time: float


def _accumulate(xp, seed, contrib, *, sequential: bool):
    """seed (b,) plus row sums of contrib (b,k).

    The sequential form adds sources one at a time in ascending order, which
    reproduces a scalar `field += c_j` loop bit for bit.
    """
    if not sequential:
        return seed + contrib.sum(axis=1)
    cols = xp.concatenate((seed[:, None], contrib), axis=1)
    return xp.cumsum(cols, axis=1)[:, -1]


def _block_fields(
    xp,
    *,
    m_local,
    volume_local,
    m_src,
    t: dict,
    sequential: bool,
):
    """Total and demag-only fields (b,3) for one block of local cells.

    m_local/m_src are already normalised by the moment unit; `t` maps component
    names to (b,k) tensor slices for the block rows and populated source columns.
    """
    sd = self_demag_factor(volume_local)[:, None]
    seed_total = sd * m_local
    seed_demag = (DEMAG_ONLY_SELF_WEIGHT * sd) * m_local

    hx, hy, hz = contract_components(
        m_src[None, :, 0], m_src[None, :, 1], m_src[None, :, 2],
        t["xx"], t["xy"], t["xz"], t["yy"], t["yz"], t["zz"],
    )

    total = xp.empty_like(seed_total)
    demag = xp.empty_like(seed_demag)
    for c, h in enumerate((hx, hy, hz)):
        total[:, c] = _accumulate(xp, seed_total[:, c], h, sequential=sequential)
        demag[:, c] = _accumulate(xp, seed_demag[:, c], h, sequential=sequential)
    return total * DIPOLE_FIELD_PREFACTOR, demag * DIPOLE_FIELD_PREFACTOR


class DipoleFieldEvaluator:
    """Cell dipole-dipole / demagnetizing field evaluator.

    Contract:
    - `configure()` binds the cell arena, the tensor store and the output buffers.
    - `evaluate()` recomputes both output fields for every populated local cell.
      Unpopulated cells are left untouched; a disabled evaluator is a no-op.
    - All global magnetizations must already be current on this process
      (all-gather happens outside, see `comm.allgather_magnetization`).
    - CPU path is the reference (strict ascending-j accumulation); the CUDA path
      is a refinement that agrees to floating tolerance.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        backend: ComputeBackend | None = None,
        device: str = "cpu",
        block_size: int = 256,
        debug: bool = False,
        rank: int = 0,
        trace=None,
    ):
        if int(block_size) < 1:
            raise ValueError("block_size must be >= 1")
        self.enabled = bool(enabled)
        self.backend = backend if backend is not None else resolve_backend(device)
        self.block_size = int(block_size)
        self.debug = bool(debug)
        self.rank = int(rank)
        self.trace = trace
        self.arena: CellArena | None = None
        self.tensor: InteractionTensorStore | None = None
        self.output: DipoleFieldOutput | None = None
        self._calls = 0
        self._device_tensor: dict | None = None

    @property
    def configured(self) -> bool:
        return self.arena is not None and self.tensor is not None and self.output is not None

    def configure(
        self,
        arena: CellArena,
        tensor: InteractionTensorStore,
        output: DipoleFieldOutput | None = None,
    ) -> DipoleFieldOutput:
        arena.validate()
        tensor.validate(arena)
        if output is None:
            output = DipoleFieldOutput.allocate(arena.n_cells)
        else:
            output.resize(arena.n_cells)
        self.arena = arena
        self.tensor = tensor
        self.output = output
        self._device_tensor = None

        self_pairs = tensor.self_pair_nonzero(arena)
        if self_pairs.size:
            warnings.warn(
                f"interaction tensor has non-zero self-pair blocks for {self_pairs.size} local cells; "
                "they are summed on top of the closed-form self-demagnetization term",
                RuntimeWarning,
            )
        lc, _ids = arena.local_populated()
        if arena.n_local and lc.size == 0:
            warnings.warn(
                f"no populated local cells on rank {self.rank}; evaluate() will not write any field",
                RuntimeWarning,
            )
        return output

    def set_magnetization(self, magnetization: np.ndarray) -> None:
        """Overwrite the global magnetization snapshot in place."""
        if self.arena is None:
            raise RuntimeError("dipole evaluator is not configured (call configure() first)")
        mag = np.asarray(magnetization, dtype=np.float64)
        if mag.shape != self.arena.magnetization.shape:
            raise ValueError(
                f"magnetization must have shape {self.arena.magnetization.shape}, got {mag.shape}"
            )
        self.arena.magnetization[...] = mag

    def evaluate(self) -> EvaluationStats | None:
        if not self.enabled:
            return None
        if not self.configured:
            raise RuntimeError(
                "dipole evaluator invoked before cell topology / interaction tensor were configured"
            )
        arena = self.arena
        tensor = self.tensor
        output = self.output
        arena.validate()
        tensor.validate(arena)
        output.validate(arena.n_cells)

        self._calls += 1
        if self.debug:
            print(f"[dipole rank={self.rank}] update_field called (call={self._calls})", flush=True)

        t0 = time.perf_counter()
        lc_all, ids_all = arena.local_populated()
        src = arena.populated_ids()
        if self.backend.device == "cuda":
            self._evaluate_cuda(lc_all, ids_all, src)
        else:
            self._evaluate_cpu(lc_all, ids_all, src)
        elapsed = time.perf_counter() - t0

        stats = EvaluationStats(
            call_id=int(self._calls),
            n_local=int(arena.n_local),
            n_evaluated=int(lc_all.size),
            n_sources=int(src.size),
            device=str(self.backend.device),
            wall_time=float(elapsed),
        )
        if self.trace is not None:
            self.trace.log(rank=self.rank, stats=stats)
        return stats

    def _blocks(self, n: int):
        for start in range(0, int(n), self.block_size):
            yield slice(start, min(start + self.block_size, int(n)))

    def _evaluate_cpu(self, lc_all: np.ndarray, ids_all: np.ndarray, src: np.ndarray) -> None:
        arena = self.arena
        tensor = self.tensor
        out = self.output
        m_src = arena.magnetization[src] * INV_BOHR_MAGNETON
        for sl in self._blocks(lc_all.size):
            lcs = lc_all[sl]
            ids = ids_all[sl]
            rows = np.ix_(lcs, src)
            t = {name: getattr(tensor, name)[rows] for name in COMPONENTS}
            total, demag = _block_fields(
                np,
                m_local=arena.magnetization[ids] * INV_BOHR_MAGNETON,
                volume_local=arena.volume[ids],
                m_src=m_src,
                t=t,
                sequential=True,
            )
            out.total_demag_field[ids] = total
            out.demag_only_field[ids] = demag

    def _evaluate_cuda(self, lc_all: np.ndarray, ids_all: np.ndarray, src: np.ndarray) -> None:
        cp = self.backend.xp
        arena = self.arena
        out = self.output
        if self._device_tensor is None:
            self._device_tensor = {name: cp.asarray(getattr(self.tensor, name)) for name in COMPONENTS}
        d_src = cp.asarray(src)
        d_m_src = cp.asarray(arena.magnetization[src]) * INV_BOHR_MAGNETON
        for sl in self._blocks(lc_all.size):
            lcs = lc_all[sl]
            ids = ids_all[sl]
            d_lcs = cp.asarray(lcs)
            t = {name: arr[d_lcs][:, d_src] for name, arr in self._device_tensor.items()}
            total, demag = _block_fields(
                cp,
                m_local=cp.asarray(arena.magnetization[ids]) * INV_BOHR_MAGNETON,
                volume_local=cp.asarray(arena.volume[ids]),
                m_src=d_m_src,
                t=t,
                sequential=False,
            )
            out.total_demag_field[ids] = to_numpy(total)
            out.demag_only_field[ids] = to_numpy(demag)
