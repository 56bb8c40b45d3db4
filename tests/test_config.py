from __future__ import annotations

import pytest

from celldemag.config import load_config


def _write(tmp_path, text: str, name: str = "cfg.yaml") -> str:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_config_defaults(tmp_path):
    cfg = load_config(_write(tmp_path, """
input:
  cells: cells.npz
  tensor: tensor.npz
"""))
    assert cfg.dipole.enabled is True
    assert cfg.dipole.device == "auto"
    assert cfg.dipole.block_size == 256
    assert cfg.dipole.debug is False
    assert cfg.output.fields == "fields.npz"
    assert cfg.output.manifest is True
    assert cfg.output.trace == ""


def test_load_config_full(tmp_path):
    cfg = load_config(_write(tmp_path, """
dipole:
  enabled: false
  device: CPU
  block_size: 8
  debug: true
input:
  cells: a.npz
  tensor: b.npz
output:
  fields: out/f.npz
  manifest: false
  trace: out/trace.csv
"""))
    assert cfg.dipole.enabled is False
    assert cfg.dipole.device == "cpu"
    assert cfg.dipole.block_size == 8
    assert cfg.dipole.debug is True
    assert cfg.input.cells == "a.npz"
    assert cfg.input.tensor == "b.npz"
    assert cfg.output.fields == "out/f.npz"
    assert cfg.output.manifest is False
    assert cfg.output.trace == "out/trace.csv"


def test_load_config_rejects_invalid_device(tmp_path):
    path = _write(tmp_path, """
dipole:
  device: tpu
input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match="dipole.device"):
        load_config(path)


def test_load_config_rejects_bad_block_size(tmp_path):
    path = _write(tmp_path, """
dipole:
  block_size: 0
input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match="dipole.block_size"):
        load_config(path)


def test_load_config_requires_input_section(tmp_path):
    path = _write(tmp_path, """
dipole:
  enabled: true
""")
    with pytest.raises(ValueError, match="input section is required"):
        load_config(path)


def test_load_config_requires_tensor_path(tmp_path):
    path = _write(tmp_path, """
input:
  cells: a.npz
""")
    with pytest.raises(ValueError, match="input.tensor"):
        load_config(path)


def test_load_config_rejects_unknown_keys(tmp_path):
    path = _write(tmp_path, """
dipole:
  enabled: true
  cutoff: 3.0
input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match="unsupported keys"):
        load_config(path)


def test_load_config_rejects_unknown_section(tmp_path):
    path = _write(tmp_path, """
exchange:
  enabled: true
input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match="unsupported sections"):
        load_config(path)


def test_load_config_parses_quoted_booleans(tmp_path):
    cfg = load_config(_write(tmp_path, """
dipole:
  enabled: "off"
  debug: "Yes"
input:
  cells: a.npz
  tensor: b.npz
output:
  manifest: "false"
"""))
    assert cfg.dipole.enabled is False
    assert cfg.dipole.debug is True
    assert cfg.output.manifest is False


@pytest.mark.parametrize(
    "section,key,value",
    [
        ("dipole", "enabled", '"maybe"'),
        ("dipole", "debug", "2"),
        ("output", "manifest", "[1]"),
    ],
)
def test_load_config_rejects_non_boolean_flags(tmp_path, section, key, value):
    other = "dipole:\n  device: cpu\n" if section == "output" else "output:\n  fields: f.npz\n"
    path = _write(tmp_path, f"""
{section}:
  {key}: {value}
{other}input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match=f"{section}.{key} must be a boolean"):
        load_config(path)


@pytest.mark.parametrize("value", ["2.5", '"eight"', "true"])
def test_load_config_block_size_type_error_names_key(tmp_path, value):
    path = _write(tmp_path, f"""
dipole:
  block_size: {value}
input:
  cells: a.npz
  tensor: b.npz
""")
    with pytest.raises(ValueError, match="dipole.block_size must be an integer"):
        load_config(path)


def test_load_config_accepts_integral_block_size_forms(tmp_path):
    cfg = load_config(_write(tmp_path, """
dipole:
  block_size: "16"
input:
  cells: a.npz
  tensor: b.npz
"""))
    assert cfg.dipole.block_size == 16
