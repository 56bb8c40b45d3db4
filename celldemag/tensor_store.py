from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .constants import TENSOR_SYM_ATOL

COMPONENTS = ("xx", "xy", "xz", "yy", "yz", "zz")


def contract_components(mx, my, mz, txx, txy, txz, tyy, tyz, tzz):
    """Field components (hx, hy, hz) of moment m through the symmetric tensor T.

    Works on numpy or cupy operands of any broadcastable shape; the term order
    is fixed so every caller accumulates the same floating-point values.
    """
    hx = mx * txx + my * txy + mz * txz
    hy = mx * txy + my * tyy + mz * tyz
    hz = mx * txz + my * tyz + mz * tzz
    return hx, hy, hz


@dataclass(frozen=True)
class InteractionTensorStore:
    """Dipole coupling tensor for every (local cell, global cell) pair.

    The symmetric 3x3 block is stored as six independent arrays of shape
    (n_local, M), indexed [lc][j].  Only local x global pairs exist on a
    process, so T[lc][j] and T[lc'][i] are not mirror entries of one array.
    Built by the geometry subsystem; read-only here (arrays are frozen).
    """

    xx: np.ndarray
    xy: np.ndarray
    xz: np.ndarray
    yy: np.ndarray
    yz: np.ndarray
    zz: np.ndarray

    def __post_init__(self):
        for name in COMPONENTS:
            arr = np.asarray(getattr(self, name), dtype=np.float64)
            # frozen, self-owned buffers are adopted as-is
            if arr.flags.writeable or arr.base is not None or not arr.flags.c_contiguous:
                arr = arr.copy()
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
        shapes = {getattr(self, name).shape for name in COMPONENTS}
        if len(shapes) != 1:
            raise ValueError(f"tensor components must share one shape, got {sorted(shapes)}")
        if self.xx.ndim != 2:
            raise ValueError(f"tensor components must be 2D (n_local, M), got {self.xx.shape}")

    @classmethod
    def zeros(cls, n_local: int, n_cells: int) -> "InteractionTensorStore":
        z = np.zeros((int(n_local), int(n_cells)), dtype=np.float64)
        return cls(xx=z, xy=z, xz=z, yy=z, yz=z, zz=z)

    @classmethod
    def from_blocks(cls, blocks: np.ndarray, *, atol: float = TENSOR_SYM_ATOL) -> "InteractionTensorStore":
        t = np.asarray(blocks, dtype=np.float64)
        if t.ndim != 4 or t.shape[2:] != (3, 3):
            raise ValueError(f"blocks must have shape (n_local, M, 3, 3), got {t.shape}")
        if not np.allclose(t, np.swapaxes(t, 2, 3), rtol=0.0, atol=float(atol)):
            raise ValueError("tensor blocks must be symmetric")
        return cls(
            xx=t[:, :, 0, 0],
            xy=t[:, :, 0, 1],
            xz=t[:, :, 0, 2],
            yy=t[:, :, 1, 1],
            yz=t[:, :, 1, 2],
            zz=t[:, :, 2, 2],
        )

    @property
    def n_local(self) -> int:
        return int(self.xx.shape[0])

    @property
    def n_cells(self) -> int:
        return int(self.xx.shape[1])

    @property
    def nbytes(self) -> int:
        return int(sum(getattr(self, name).nbytes for name in COMPONENTS))

    def validate(self, arena) -> None:
        want = (int(arena.n_local), int(arena.n_cells))
        if self.xx.shape != want:
            raise ValueError(
                f"interaction tensor shape {self.xx.shape} does not match (n_local, M)={want}"
            )

    def block(self, lc: int, j: int) -> np.ndarray:
        return np.array(
            [
                [self.xx[lc, j], self.xy[lc, j], self.xz[lc, j]],
                [self.xy[lc, j], self.yy[lc, j], self.yz[lc, j]],
                [self.xz[lc, j], self.yz[lc, j], self.zz[lc, j]],
            ],
            dtype=np.float64,
        )

    def contract(self, lc: int, m: np.ndarray, ids: np.ndarray | None = None) -> np.ndarray:
        """Per-source field contributions (k,3) on local cell `lc`.

        `m` holds normalised moments (k,3) of the sources `ids` (all cells if None).
        """
        sel = slice(None) if ids is None else np.asarray(ids, dtype=np.int64)
        mm = np.asarray(m, dtype=np.float64)
        mx = mm[:, 0]
        my = mm[:, 1]
        mz = mm[:, 2]
        txx = self.xx[lc, sel]
        txy = self.xy[lc, sel]
        txz = self.xz[lc, sel]
        tyy = self.yy[lc, sel]
        tyz = self.yz[lc, sel]
        tzz = self.zz[lc, sel]
        out = np.empty((mm.shape[0], 3), dtype=np.float64)
        out[:, 0], out[:, 1], out[:, 2] = contract_components(mx, my, mz, txx, txy, txz, tyy, tyz, tzz)
        return out

    def local_rows(self, local_cell_ids: np.ndarray) -> "InteractionTensorStore":
        """Store restricted to the rows of `local_cell_ids` (full M x M tensor only)."""
        if self.n_local != self.n_cells:
            raise ValueError(
                f"row selection needs a full (M, M) tensor, got {self.xx.shape}"
            )
        ids = np.asarray(local_cell_ids, dtype=np.int64)
        if ids.size and (int(ids.min()) < 0 or int(ids.max()) >= self.n_cells):
            raise ValueError(f"local_cell_ids must lie in [0, {self.n_cells})")
        return InteractionTensorStore(**{name: getattr(self, name)[ids] for name in COMPONENTS})

    def self_pair_nonzero(self, arena) -> np.ndarray:
        """Local indices whose (lc, own global id) block is non-zero."""
        lc = np.arange(arena.n_local, dtype=np.int64)
        ii = np.asarray(arena.local_cell_ids, dtype=np.int64)
        nz = np.zeros(lc.shape, dtype=bool)
        for name in COMPONENTS:
            nz |= getattr(self, name)[lc, ii] != 0.0
        return lc[nz]
