from __future__ import annotations

import warnings

import numpy as np
import pytest

from celldemag.backend import describe_backend, resolve_backend, to_numpy


def test_resolve_backend_cpu_forced():
    b = resolve_backend("cpu")
    assert b.device == "cpu"
    assert b.xp is np


def test_resolve_backend_invalid_device():
    with pytest.raises(ValueError, match="device must be one of"):
        resolve_backend("tpu")


def test_resolve_backend_cuda_fallback_warns():
    with warnings.catch_warnings(record=True) as w:
        warnings.simplefilter("always")
        b = resolve_backend("cuda")
    assert b.device in ("cpu", "cuda")
    if b.device == "cpu":
        assert any("falling back to CPU" in str(x.message) for x in w)


def test_resolve_backend_auto_force_cpu_env(monkeypatch):
    monkeypatch.setenv("CELLDEMAG_FORCE_CPU", "1")
    b = resolve_backend("auto")
    assert b.device == "cpu"
    assert b.reason == "CELLDEMAG_FORCE_CPU"


def test_describe_backend_prefix():
    b = resolve_backend("cpu")
    assert describe_backend(b) == "[backend] device=cpu (forced cpu)"
    assert describe_backend(b, rank=3).startswith("[backend rank=3] device=cpu")


def test_to_numpy_passthrough():
    a = np.arange(3.0)
    assert to_numpy(a) is a
    assert isinstance(to_numpy([1.0, 2.0]), np.ndarray)
