from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any


@dataclass
class GoldenFields:
    case: str
    cell_ids: list[int]
    total: list[list[float]]
    demag_only: list[list[float]]


def to_dict(series: list[GoldenFields]) -> dict[str, Any]:
    return {"series": [s.__dict__ for s in series]}


def from_dict(d: dict[str, Any]) -> list[GoldenFields]:
    out = []
    for s in d.get("series", []):
        out.append(
            GoldenFields(
                case=s["case"],
                cell_ids=[int(x) for x in s["cell_ids"]],
                total=[[float(c) for c in row] for row in s["total"]],
                demag_only=[[float(c) for c in row] for row in s["demag_only"]],
            )
        )
    return out


def save(path: str, series: list[GoldenFields]):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_dict(series), f, indent=2)


def load(path: str) -> list[GoldenFields]:
    with open(path, "r", encoding="utf-8") as f:
        d = json.load(f)
    return from_dict(d)
