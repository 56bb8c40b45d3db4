from __future__ import annotations
import os
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

def plot_field_profile(case: str, cell_ids: np.ndarray, total: np.ndarray, demag_only: np.ndarray,
                       out_dir: str) -> str:
    """Per-cell |H| of both outputs for one verification case."""
    os.makedirs(out_dir, exist_ok=True)
    ids = np.asarray(cell_ids)
    plt.figure()
    plt.plot(ids, np.linalg.norm(total, axis=1), "o-", label="total_demag_field")
    plt.plot(ids, np.linalg.norm(demag_only, axis=1), "s--", label="demag_only_field")
    plt.xlabel("global cell id")
    plt.ylabel("|H| (T)")
    plt.title(case)
    plt.legend()
    plt.tight_layout()
    path = os.path.join(out_dir, f"{case}.png")
    plt.savefig(path)
    plt.close()
    return path
