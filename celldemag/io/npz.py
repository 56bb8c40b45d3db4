from __future__ import annotations

import os

import numpy as np

from ..cells import CellArena
from ..field import DipoleFieldOutput
from ..tensor_store import COMPONENTS, InteractionTensorStore
from .manifest import fields_manifest_payload, write_manifest

FIELDS_SCHEMA_NAME = "celldemag.fields.npz"
FIELDS_SCHEMA_VERSION = 1
_FIELD_ARRAYS = ["total_demag_field", "demag_only_field", "local_cell_ids"]


def _require(data, keys, path: str) -> None:
    missing = [k for k in keys if k not in data.files]
    if missing:
        raise ValueError(f"{path}: missing arrays {missing}")


def _prepare_path(path: str) -> str:
    # np.savez appends the suffix itself when it is missing
    p = str(path) if str(path).endswith(".npz") else f"{path}.npz"
    os.makedirs(os.path.dirname(p) or ".", exist_ok=True)
    return p


def load_cells(path: str, local_cell_ids: np.ndarray | None = None) -> CellArena:
    """Cell arena from .npz; local ids default to the file's, then to all cells."""
    with np.load(path) as data:
        _require(data, ("magnetization", "volume", "num_atoms"), path)
        mag = np.array(data["magnetization"], dtype=np.float64)
        vol = np.array(data["volume"], dtype=np.float64)
        nat = np.array(data["num_atoms"], dtype=np.int64)
        if local_cell_ids is None and "local_cell_ids" in data.files:
            local_cell_ids = np.array(data["local_cell_ids"], dtype=np.int64)
    if local_cell_ids is None:
        local_cell_ids = np.arange(vol.shape[0], dtype=np.int64)
    arena = CellArena(
        magnetization=mag,
        volume=vol,
        num_atoms=nat,
        local_cell_ids=np.asarray(local_cell_ids, dtype=np.int64),
    )
    arena.validate()
    return arena


def save_cells(path: str, arena: CellArena, *, owner_rank: np.ndarray | None = None) -> str:
    path = _prepare_path(path)
    arrays = dict(
        magnetization=arena.magnetization,
        volume=arena.volume,
        num_atoms=arena.num_atoms,
        local_cell_ids=arena.local_cell_ids,
    )
    if owner_rank is not None:
        owner = np.asarray(owner_rank, dtype=np.int64)
        if owner.shape != (arena.n_cells,):
            raise ValueError(f"owner_rank must have shape ({arena.n_cells},), got {owner.shape}")
        arrays["owner_rank"] = owner
    np.savez(path, **arrays)
    return path


def load_owner_rank(path: str) -> np.ndarray | None:
    """Cell -> rank assignment stored next to the cells, or None."""
    with np.load(path) as data:
        if "owner_rank" not in data.files:
            return None
        return np.array(data["owner_rank"], dtype=np.int64)


def load_tensor(path: str) -> InteractionTensorStore:
    with np.load(path) as data:
        _require(data, COMPONENTS, path)
        comps = {}
        for name in COMPONENTS:
            arr = np.require(data[name], dtype=np.float64, requirements=["C", "O"])
            arr.setflags(write=False)
            comps[name] = arr
    # frozen freshly loaded buffers are adopted without another copy
    return InteractionTensorStore(**comps)


def save_tensor(path: str, store: InteractionTensorStore) -> str:
    path = _prepare_path(path)
    np.savez(path, **{name: getattr(store, name) for name in COMPONENTS})
    return path


def save_fields(
    path: str,
    arena: CellArena,
    output: DipoleFieldOutput,
    *,
    write_output_manifest: bool = True,
    n_evaluated: int = 0,
    device: str = "cpu",
) -> str:
    path = _prepare_path(path)
    np.savez(
        path,
        total_demag_field=output.total_demag_field,
        demag_only_field=output.demag_only_field,
        local_cell_ids=arena.local_cell_ids,
    )
    if write_output_manifest:
        payload = fields_manifest_payload(
            path=path,
            format_name=FIELDS_SCHEMA_NAME,
            schema_version=FIELDS_SCHEMA_VERSION,
            arrays=list(_FIELD_ARRAYS),
            n_cells=arena.n_cells,
            n_local=arena.n_local,
            n_evaluated=int(n_evaluated),
            device=device,
        )
        write_manifest(f"{path}.manifest.json", payload)
    return path


def load_fields(path: str) -> tuple[DipoleFieldOutput, np.ndarray]:
    with np.load(path) as data:
        _require(data, _FIELD_ARRAYS, path)
        out = DipoleFieldOutput(
            total_demag_field=np.array(data["total_demag_field"], dtype=np.float64),
            demag_only_field=np.array(data["demag_only_field"], dtype=np.float64),
        )
        ids = np.array(data["local_cell_ids"], dtype=np.int64)
    return out, ids
