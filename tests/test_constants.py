from __future__ import annotations

import math

import numpy as np
import pytest

from celldemag.constants import (
    BOHR_MAGNETON,
    DEMAG_ONLY_SELF_WEIGHT,
    DIPOLE_FIELD_PREFACTOR,
    INV_BOHR_MAGNETON,
    self_demag_factor,
)


def test_bohr_magneton_reference_value():
    assert BOHR_MAGNETON == 9.274009994e-24
    assert INV_BOHR_MAGNETON == 1.0 / 9.274009994e-24


def test_prefactor_folds_mu0_over_4pi_and_angstrom_volume():
    # mu_B * 1e-7 * 1e30
    assert DIPOLE_FIELD_PREFACTOR == 9.274009994e-01
    assert DIPOLE_FIELD_PREFACTOR == pytest.approx(BOHR_MAGNETON * 1e-7 * 1e30, rel=1e-12)


def test_self_demag_factor_sphere():
    assert self_demag_factor(1000.0) == 8.0 * math.pi / (3.0 * 1000.0)
    assert self_demag_factor(2.0) == pytest.approx(4.0 * math.pi / 3.0)


@pytest.mark.parametrize("bad", [0.0, -1.0, float("nan")])
def test_self_demag_factor_rejects_non_positive_volume(bad):
    with pytest.raises(ValueError, match="volume must be positive"):
        self_demag_factor(bad)


def test_self_demag_factor_accepts_volume_arrays():
    vol = np.array([1000.0, 512.0, 3.375])
    got = self_demag_factor(vol)
    assert got.shape == (3,)
    for v, g in zip(vol, got):
        assert g == 8.0 * math.pi / (3.0 * float(v))


@pytest.mark.parametrize("bad", [0.0, -8.0, float("nan")])
def test_self_demag_factor_rejects_arrays_with_non_positive_volume(bad):
    with pytest.raises(ValueError, match="volume must be positive"):
        self_demag_factor(np.array([1000.0, bad]))


def test_demag_only_self_weight_is_minus_half():
    assert DEMAG_ONLY_SELF_WEIGHT == -0.5
