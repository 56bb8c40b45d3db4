from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Literal

import yaml

DeviceType = Literal["auto", "cpu", "cuda"]

_SECTION_KEYS = {
    "dipole": {"enabled", "device", "block_size", "debug"},
    "input": {"cells", "tensor"},
    "output": {"fields", "manifest", "trace"},
}


@dataclass
class DipoleConfig:
    enabled: bool = True
    device: DeviceType = "auto"
    block_size: int = 256
    debug: bool = False


@dataclass
class InputConfig:
    cells: str
    tensor: str


@dataclass
class OutputConfig:
    fields: str = "fields.npz"
    manifest: bool = True
    trace: str = ""


@dataclass
class Config:
    dipole: DipoleConfig
    input: InputConfig
    output: OutputConfig = field(default_factory=OutputConfig)


_TRUE_WORDS = ("1", "true", "yes", "y", "on")
_FALSE_WORDS = ("0", "false", "no", "n", "off")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE_WORDS:
            return True
        if s in _FALSE_WORDS:
            return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{key} must be an integer, got {value!r}")


def _section(root: dict[str, Any], key: str, *, required: bool) -> dict[str, Any]:
    sec = root.get(key, None)
    if sec is None:
        if required:
            raise ValueError(f"{key} section is required")
        return {}
    if not isinstance(sec, dict):
        raise ValueError(f"{key} must be a mapping")
    extra = sorted(set(sec.keys()) - _SECTION_KEYS[key])
    if extra:
        raise ValueError(f"{key} contains unsupported keys: {extra}")
    return sec


def parse_config(d: Any) -> Config:
    if not isinstance(d, dict):
        raise ValueError("config root must be a mapping")
    extra = sorted(set(d.keys()) - set(_SECTION_KEYS))
    if extra:
        raise ValueError(f"config contains unsupported sections: {extra}")

    dp = _section(d, "dipole", required=False)
    device = str(dp.get("device", "auto")).strip().lower()
    if device not in ("auto", "cpu", "cuda"):
        raise ValueError("dipole.device must be one of: auto, cpu, cuda")
    block_size = _as_int(dp.get("block_size", 256), "dipole.block_size")
    if block_size < 1:
        raise ValueError("dipole.block_size must be >= 1")

    inp = _section(d, "input", required=True)
    for key in ("cells", "tensor"):
        if not str(inp.get(key, "") or "").strip():
            raise ValueError(f"input.{key} must be a non-empty path")

    out = _section(d, "output", required=False)
    fields_path = str(out.get("fields", "fields.npz") or "").strip()
    if not fields_path:
        raise ValueError("output.fields must be a non-empty path")

    return Config(
        dipole=DipoleConfig(
            enabled=_as_bool(dp.get("enabled", True), "dipole.enabled"),
            device=device,
            block_size=block_size,
            debug=_as_bool(dp.get("debug", False), "dipole.debug"),
        ),
        input=InputConfig(
            cells=str(inp["cells"]),
            tensor=str(inp["tensor"]),
        ),
        output=OutputConfig(
            fields=fields_path,
            manifest=_as_bool(out.get("manifest", True), "output.manifest"),
            trace=str(out.get("trace", "") or ""),
        ),
    )


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        d = yaml.safe_load(f)
    return parse_config(d)
