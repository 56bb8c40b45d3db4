from __future__ import annotations

import numpy as np
import pytest

from celldemag.backend import resolve_backend
from celldemag.field import DipoleFieldEvaluator
from celldemag.testcases import default_cases, make_case


@pytest.mark.skipif(resolve_backend("auto").device != "cuda", reason="CUDA backend not available")
@pytest.mark.parametrize("case", default_cases(), ids=lambda c: c.name)
def test_cuda_matches_cpu_reference(case):
    arena, tensor = make_case(case)
    cpu = DipoleFieldEvaluator(backend=resolve_backend("cpu"), block_size=8)
    ref = cpu.configure(arena, tensor)
    cpu.evaluate()

    arena_g, tensor_g = make_case(case)
    gpu = DipoleFieldEvaluator(backend=resolve_backend("cuda"), block_size=8)
    out = gpu.configure(arena_g, tensor_g)
    stats = gpu.evaluate()
    assert stats.device == "cuda"
    scale = max(1e-30, float(np.abs(ref.total_demag_field).max()))
    np.testing.assert_allclose(out.total_demag_field, ref.total_demag_field, rtol=1e-12, atol=1e-14 * scale)
    np.testing.assert_allclose(out.demag_only_field, ref.demag_only_field, rtol=1e-12, atol=1e-14 * scale)
