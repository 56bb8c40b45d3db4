from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any

from ..constants import BOHR_MAGNETON, DIPOLE_FIELD_PREFACTOR


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def write_manifest(path: str, payload: dict[str, Any]) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
    return path


def fields_manifest_payload(
    *,
    path: str,
    format_name: str,
    schema_version: int,
    arrays: list[str],
    n_cells: int,
    n_local: int,
    n_evaluated: int,
    device: str,
) -> dict[str, Any]:
    return {
        "kind": "dipole_fields",
        "schema": {
            "name": str(format_name),
            "version": int(schema_version),
        },
        "created_at_utc": _utc_now_iso(),
        "path": str(path),
        "arrays": list(arrays),
        "n_cells": int(n_cells),
        "n_local": int(n_local),
        "n_evaluated": int(n_evaluated),
        "device": str(device),
        "units": {
            "field": "T",
            "bohr_magneton": float(BOHR_MAGNETON),
            "dipole_field_prefactor": float(DIPOLE_FIELD_PREFACTOR),
        },
    }
