from __future__ import annotations

from dataclasses import dataclass, replace

import numpy as np


@dataclass
class CellArena:
    """All global cells of the simulation plus the local->global map of this process.

    Arrays are structure-of-arrays, indexed by global cell id in [0, M):
    - magnetization: (M,3) cell moment in J/T,
    - volume: (M,) in Angstrom^3,
    - num_atoms: (M,) occupancy; cells with zero atoms are inert,
    - local_cell_ids: (n_local,) ordered global ids owned by this process.
    """

    magnetization: np.ndarray
    volume: np.ndarray
    num_atoms: np.ndarray
    local_cell_ids: np.ndarray

    def __post_init__(self):
        self.magnetization = np.asarray(self.magnetization, dtype=np.float64)
        self.volume = np.asarray(self.volume, dtype=np.float64)
        self.num_atoms = np.asarray(self.num_atoms, dtype=np.int64)
        self.local_cell_ids = np.asarray(self.local_cell_ids, dtype=np.int64)

    @classmethod
    def single_process(cls, magnetization, volume, num_atoms) -> "CellArena":
        n = int(np.asarray(volume).shape[0])
        return cls(
            magnetization=magnetization,
            volume=volume,
            num_atoms=num_atoms,
            local_cell_ids=np.arange(n, dtype=np.int64),
        )

    @property
    def n_cells(self) -> int:
        return int(self.volume.shape[0])

    @property
    def n_local(self) -> int:
        return int(self.local_cell_ids.shape[0])

    def validate(self) -> None:
        m = self.n_cells
        if self.volume.ndim != 1:
            raise ValueError("volume must have shape (M,)")
        if self.magnetization.shape != (m, 3):
            raise ValueError(
                f"magnetization must have shape ({m}, 3), got {self.magnetization.shape}"
            )
        if self.num_atoms.shape != (m,):
            raise ValueError(f"num_atoms must have shape ({m},), got {self.num_atoms.shape}")
        if self.local_cell_ids.ndim != 1:
            raise ValueError("local_cell_ids must have shape (n_local,)")
        if self.local_cell_ids.size:
            lo = int(self.local_cell_ids.min())
            hi = int(self.local_cell_ids.max())
            if lo < 0 or hi >= m:
                raise ValueError(f"local_cell_ids out of range [0, {m}): min={lo} max={hi}")
            if np.unique(self.local_cell_ids).size != self.local_cell_ids.size:
                raise ValueError("local_cell_ids contains duplicates")
        if np.any(self.num_atoms < 0):
            raise ValueError("num_atoms must be non-negative")
        populated = self.num_atoms > 0
        if np.any(~(self.volume[populated] > 0.0)):
            bad = np.flatnonzero(populated & ~(self.volume > 0.0))
            raise ValueError(f"populated cells with non-positive volume: {bad[:8].tolist()}")

    def populated_mask(self) -> np.ndarray:
        return self.num_atoms > 0

    def populated_ids(self) -> np.ndarray:
        """Populated global cells, ascending."""
        return np.flatnonzero(self.num_atoms > 0).astype(np.int64)

    def local_populated(self) -> tuple[np.ndarray, np.ndarray]:
        """(lc, i) for local cells with nonzero occupancy, in local index order."""
        keep = self.num_atoms[self.local_cell_ids] > 0
        lc = np.flatnonzero(keep).astype(np.int64)
        return lc, self.local_cell_ids[lc]

    def with_magnetization(self, magnetization: np.ndarray) -> "CellArena":
        mag = np.asarray(magnetization, dtype=np.float64)
        if mag.shape != (self.n_cells, 3):
            raise ValueError(f"magnetization must have shape ({self.n_cells}, 3), got {mag.shape}")
        return replace(self, magnetization=mag.copy())

    def with_local_cells(self, local_cell_ids: np.ndarray) -> "CellArena":
        arena = replace(self, local_cell_ids=np.asarray(local_cell_ids, dtype=np.int64).copy())
        arena.validate()
        return arena

    def scaled(self, k: float) -> "CellArena":
        return replace(self, magnetization=self.magnetization * float(k))
