from __future__ import annotations
import csv
import os
import time
import warnings


class DipoleTraceLogger:
    """CSV trace, one row per dipole field evaluation."""

    COLUMNS = [
        "wall_time", "rank", "call_id", "n_local", "n_evaluated", "n_sources", "device", "elapsed",
    ]

    def __init__(self, path: str, *, enabled: bool = True):
        self.enabled = bool(enabled)
        self.start = time.perf_counter()
        self.path = path
        if not self.enabled:
            self._f = None
            self._w = None
            return
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._f = open(path, "w", newline="", encoding="utf-8")
        self._w = csv.writer(self._f)
        self._w.writerow(self.COLUMNS)
        self._f.flush()

    def log(self, *, rank: int, stats) -> None:
        if not self.enabled or self._w is None:
            return
        wall = time.perf_counter() - self.start
        self._w.writerow([
            f"{wall:.6f}",
            int(rank),
            int(stats.call_id),
            int(stats.n_local),
            int(stats.n_evaluated),
            int(stats.n_sources),
            str(stats.device),
            f"{float(stats.wall_time):.6e}",
        ])
        self._f.flush()

    def close(self):
        try:
            if self._f is not None:
                self._f.close()
        except Exception as exc:
            warnings.warn(
                f"DipoleTraceLogger.close() failed for {self.path!r}: {exc!r}",
                RuntimeWarning,
            )
