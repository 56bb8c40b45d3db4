from __future__ import annotations

import os
from dataclasses import dataclass

import numpy as np

try:
    import mpi4py

    mpi4py.rc.initialize = False
    mpi4py.rc.finalize = False
    from mpi4py import MPI
except Exception:
    MPI = None

from .cells import CellArena
from .field import DipoleFieldOutput


class SerialComm:
    """Single-rank stand-in exposing the lowercase mpi4py object API used here."""

    def Get_rank(self) -> int:
        return 0

    def Get_size(self) -> int:
        return 1

    def allgather(self, obj):
        return [obj]

    def gather(self, obj, root: int = 0):
        return [obj]

    def barrier(self) -> None:
        return None


def get_comm():
    """MPI.COMM_WORLD if MPI is importable and initialized, else a SerialComm.

    MPI is never initialized here; see `init_comm`.
    """
    if MPI is None or not MPI.Is_initialized():
        return SerialComm()
    return MPI.COMM_WORLD


# Set by the common launchers (Open MPI, MPICH/Hydra, PMIx, Intel MPI).
_MPI_LAUNCH_ENV = ("OMPI_COMM_WORLD_SIZE", "PMI_SIZE", "PMIX_RANK", "MPI_LOCALNRANKS")


def launched_under_mpi(environ=None) -> bool:
    env = os.environ if environ is None else environ
    return any(str(env.get(k, "")).strip() for k in _MPI_LAUNCH_ENV)


@dataclass
class CommRuntime:
    comm: object
    owns_mpi_init: bool = False

    @property
    def rank(self) -> int:
        return int(self.comm.Get_rank())

    @property
    def size(self) -> int:
        return int(self.comm.Get_size())

    def close(self) -> None:
        """Finalize MPI if (and only if) this runtime initialized it."""
        if self.owns_mpi_init and MPI is not None and MPI.Is_initialized() and not MPI.Is_finalized():
            self.comm.Barrier()
            MPI.Finalize()
        self.owns_mpi_init = False


def init_comm(mode: str = "auto") -> CommRuntime:
    """Communicator for one evaluation run.

    mode="off" always runs single-rank.  mode="on" requires mpi4py and
    initializes MPI when the launcher has not.  mode="auto" initializes MPI
    only when the process was started by an MPI launcher.
    """
    m = str(mode).strip().lower()
    if m not in ("auto", "on", "off"):
        raise ValueError("mpi mode must be one of: auto, on, off")
    if m == "off":
        return CommRuntime(comm=SerialComm())
    if MPI is None:
        if m == "on":
            raise RuntimeError("mpi4py required")
        return CommRuntime(comm=SerialComm())
    owns_mpi_init = False
    if not MPI.Is_initialized() and (m == "on" or launched_under_mpi()):
        MPI.Init()
        owns_mpi_init = True
    return CommRuntime(comm=get_comm(), owns_mpi_init=owns_mpi_init)


def local_ids_from_owner(owner_rank: np.ndarray, rank: int, size: int) -> np.ndarray:
    """Ascending global ids of the cells assigned to `rank`."""
    owner = np.asarray(owner_rank, dtype=np.int64)
    if owner.ndim != 1:
        raise ValueError("owner_rank must have shape (M,)")
    if owner.size and (int(owner.min()) < 0 or int(owner.max()) >= int(size)):
        raise ValueError(f"owner_rank values must lie in [0, {int(size)})")
    return np.flatnonzero(owner == int(rank)).astype(np.int64)


def allgather_magnetization(comm, arena: CellArena, local_mag: np.ndarray) -> np.ndarray:
    """Assemble the global (M,3) magnetization from every rank's owned rows.

    Each global cell must be owned by exactly one rank.
    """
    ids = np.asarray(arena.local_cell_ids, dtype=np.int64)
    mag = np.asarray(local_mag, dtype=np.float64)
    if mag.shape != (ids.size, 3):
        raise ValueError(f"local_mag must have shape ({ids.size}, 3), got {mag.shape}")

    parts = comm.allgather((ids, mag))
    n = int(arena.n_cells)
    out = np.zeros((n, 3), dtype=np.float64)
    owned = np.zeros((n,), dtype=np.int64)
    for rank, (r_ids, r_mag) in enumerate(parts):
        r_ids = np.asarray(r_ids, dtype=np.int64)
        if r_ids.size and (int(r_ids.min()) < 0 or int(r_ids.max()) >= n):
            raise ValueError(f"rank {rank} sent cell ids outside [0, {n})")
        out[r_ids] = np.asarray(r_mag, dtype=np.float64)
        np.add.at(owned, r_ids, 1)
    if np.any(owned > 1):
        dup = np.flatnonzero(owned > 1)
        raise ValueError(f"cells owned by more than one rank: {dup[:8].tolist()}")
    if np.any(owned == 0):
        miss = np.flatnonzero(owned == 0)
        raise ValueError(f"cells not owned by any rank: {miss[:8].tolist()}")
    return out


def gather_fields(comm, arena: CellArena, output: DipoleFieldOutput, root: int = 0):
    """Owned rows of both outputs assembled on `root`; other ranks get None."""
    ids = np.asarray(arena.local_cell_ids, dtype=np.int64)
    payload = (ids, output.total_demag_field[ids].copy(), output.demag_only_field[ids].copy())
    parts = comm.gather(payload, root=int(root))
    if int(comm.Get_rank()) != int(root):
        return None
    full = DipoleFieldOutput.allocate(arena.n_cells)
    for r_ids, tot, dem in parts:
        r_ids = np.asarray(r_ids, dtype=np.int64)
        full.total_demag_field[r_ids] = tot
        full.demag_only_field[r_ids] = dem
    return full
