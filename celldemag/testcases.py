from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from .cells import CellArena
from .constants import BOHR_MAGNETON
from .tensor_store import InteractionTensorStore

@dataclass(frozen=True)
class Case:
    name: str
    kind: str  # isolated, uniform, canted, random
    shape: tuple[int, int, int]
    cell_size: float  # Angstrom
    atoms_per_cell: int = 64
    moment_per_atom: float = 1.0  # in Bohr magnetons
    vacancy_fraction: float = 0.0
    vacancy_every: int = 0  # empty every n-th cell (global ids n-1, 2n-1, ...)
    local_stride: int = 1  # keep every n-th cell as local (round-robin partition)
    local_offset: int = 0
    seed: int = 123

# Unit vectors from 3-4-5 triangles, cycled over the global cell index.
_CANTED_DIRECTIONS = np.array(
    [
        [0.6, 0.8, 0.0],
        [0.0, -0.6, 0.8],
        [-0.8, 0.0, 0.6],
        [0.0, 0.0, -1.0],
    ]
)

def cell_centres(shape: tuple[int, int, int], cell_size: float) -> np.ndarray:
    nx, ny, nz = (int(x) for x in shape)
    ii, jj, kk = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij")
    idx = np.stack([ii.ravel(), jj.ravel(), kk.ravel()], axis=1).astype(float)
    return (idx + 0.5) * float(cell_size)

def point_dipole_tensor(centres: np.ndarray, local_ids: np.ndarray) -> InteractionTensorStore:
    """Reference far-field tensor (3 e e^T - I)/r^3 between cell centres.

    Verification fixture only: the production tensor comes from the geometry
    subsystem.  The self-pair block (j == i) is zero.
    """
    c = np.asarray(centres, dtype=float)
    ids = np.asarray(local_ids, dtype=np.int64)
    d = c[None, :, :] - c[ids][:, None, :]  # (n_local, M, 3)
    r2 = (d * d).sum(axis=2)
    self_pair = r2 == 0.0
    r2 = np.where(self_pair, 1.0, r2)
    r = np.sqrt(r2)
    e = d / r[:, :, None]
    inv_r3 = np.where(self_pair, 0.0, 1.0 / (r2 * r))
    blocks = (3.0 * e[:, :, :, None] * e[:, :, None, :] - np.eye(3)[None, None, :, :])
    blocks *= inv_r3[:, :, None, None]
    return InteractionTensorStore.from_blocks(blocks)

def _moments(case: Case, n: int) -> np.ndarray:
    mag = float(case.atoms_per_cell) * float(case.moment_per_atom) * BOHR_MAGNETON
    if case.kind in ("isolated", "uniform"):
        m = np.zeros((n, 3), dtype=float)
        m[:, 2] = mag
        return m
    if case.kind == "canted":
        return _CANTED_DIRECTIONS[np.arange(n) % len(_CANTED_DIRECTIONS)] * mag
    if case.kind == "random":
        rng = np.random.default_rng(int(case.seed))
        u = rng.normal(size=(n, 3))
        u /= np.linalg.norm(u, axis=1, keepdims=True)
        return u * mag
    raise ValueError(case.kind)

def make_case(case: Case) -> tuple[CellArena, InteractionTensorStore]:
    centres = cell_centres(case.shape, case.cell_size)
    n = int(centres.shape[0])
    num_atoms = np.full((n,), int(case.atoms_per_cell), dtype=np.int64)
    if case.vacancy_fraction > 0.0:
        rng = np.random.default_rng(int(case.seed) + 999)
        num_atoms[rng.random(n) < float(case.vacancy_fraction)] = 0
    if case.vacancy_every > 0:
        every = int(case.vacancy_every)
        num_atoms[(np.arange(n) + 1) % every == 0] = 0
    volume = np.full((n,), float(case.cell_size) ** 3, dtype=float)
    local_ids = np.arange(int(case.local_offset), n, max(1, int(case.local_stride)), dtype=np.int64)
    arena = CellArena(
        magnetization=_moments(case, n),
        volume=volume,
        num_atoms=num_atoms,
        local_cell_ids=local_ids,
    )
    arena.validate()
    return arena, point_dipole_tensor(centres, local_ids)

def default_cases() -> list[Case]:
    # no RNG: the committed golden file must be reproducible on any platform
    return [
        Case(name="isolated_cell", kind="isolated", shape=(1, 1, 1), cell_size=10.0),
        Case(name="uniform_cube", kind="uniform", shape=(3, 3, 3), cell_size=10.0),
        Case(name="canted_slab_vacancies", kind="canted", shape=(4, 4, 2), cell_size=8.0,
             vacancy_every=5),
        Case(name="partitioned_lattice", kind="canted", shape=(3, 3, 2), cell_size=12.0,
             local_stride=2, local_offset=1),
    ]
