"""Named physical constants for the cell dipole field.

These constants replace the magic numbers of the reference simulator.
Any change to these values is a behaviour change and must be verified
against the golden field files (``celldemag golden-check``).

Categories
----------
BOHR_MAGNETON
    Elementary magnetic-moment unit (J/T).  Cell magnetizations are stored
    in J/T and normalised to dimensionless moments by multiplying with
    ``INV_BOHR_MAGNETON``.

DIPOLE_FIELD_PREFACTOR
    ``mu_B * mu_0/(4 pi) / 1e-30`` = ``9.274009994e-24 * 1e-7 * 1e30``.
    Converts the accumulated (moment / volume) sums to Tesla; the last
    factor accounts for cell volumes and tensors expressed in Angstrom.
    Applied once per cell after accumulation.

self_demag_factor
    ``8 pi / (3 V)``: self-demagnetization of a uniformly magnetised sphere
    of volume V.  Accepts a scalar or an array of volumes (numpy or cupy).
"""

from __future__ import annotations

import math

import numpy as np

# ---------------------------------------------------------------------------
# Moment unit
# ---------------------------------------------------------------------------
BOHR_MAGNETON: float = 9.274009994e-24
INV_BOHR_MAGNETON: float = 1.0 / BOHR_MAGNETON

# ---------------------------------------------------------------------------
# mu_B * mu_0/4pi * 1e30 (Angstrom^3 -> m^3)
# ---------------------------------------------------------------------------
DIPOLE_FIELD_PREFACTOR: float = 9.274009994e-01

# Weight of the self term in the diagnostic (demag-only) field
DEMAG_ONLY_SELF_WEIGHT: float = -0.5

# Symmetry tolerance for 3x3 tensor blocks
TENSOR_SYM_ATOL: float = 1e-12


def self_demag_factor(volume):
    if np.isscalar(volume):
        v = float(volume)
        if not v > 0.0:
            raise ValueError(f"cell volume must be positive, got {v!r}")
    else:
        v = volume
        if not bool((v > 0.0).all()):
            raise ValueError("cell volume must be positive for every cell")
    # same operation order as the reference kernel: 8*pi/(3*V)
    return 8.0 * math.pi / (3.0 * v)
