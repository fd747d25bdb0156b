"""Scan timing metrics - latency focused."""

import time


class MetricsCollector:
    """Collects named timers and accumulates them per stage."""

    def __init__(self):
        self._start_times: dict[str, float] = {}
        self._totals: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, add it to the stage total and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times[name]
        del self._start_times[name]
        self._totals[name] = self._totals.get(name, 0.0) + elapsed
        return elapsed

    def total(self, name: str) -> float:
        """Accumulated time for a stage across all start/stop pairs."""
        return self._totals.get(name, 0.0)

    def create_scan_metrics(self, started: float) -> dict:
        """Create timing fields for a scan result."""
        return {
            "duration_sec": time.perf_counter() - started,
            "search_time_sec": self.total("search"),
            "classification_time_sec": self.total("classification"),
        }
