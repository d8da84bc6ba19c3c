from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter_ns
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Gauge, write_to_textfile


@dataclass
class PhaseMetrics:
    start_ns: int = field(default_factory=perf_counter_ns)
    phase_starts: Dict[str, int] = field(default_factory=dict)
    phase_durations_ns: Dict[str, int] = field(default_factory=dict)
    end_ns: Optional[int] = None

    def start_phase(self, name: str) -> None:
        """Mark the start of a phase."""
        self.phase_starts[name] = perf_counter_ns()

    def end_phase(self, name: str) -> None:
        """Mark the end of a phase and record its duration."""
        if name in self.phase_starts:
            end = perf_counter_ns()
            duration = end - self.phase_starts.pop(name)
            self.phase_durations_ns[name] = self.phase_durations_ns.get(name, 0) + duration

    def finish(self) -> None:
        """Mark the end of the run, closing any phase still open."""
        for name in list(self.phase_starts):
            self.end_phase(name)
        self.end_ns = perf_counter_ns()

    def to_dict(self) -> Dict[str, object]:
        """Convert metrics to a dictionary with millisecond precision."""
        total_ms = None
        if self.end_ns is not None:
            total_ms = (self.end_ns - self.start_ns) / 1_000_000.0
        phases_ms = {k: v / 1_000_000.0 for k, v in self.phase_durations_ns.items()}
        return {
            "total_ms": total_ms,
            "phases_ms": phases_ms,
        }

    def write_textfile(self, path: Path, exit_code: int) -> None:
        """Write the run as Prometheus gauges for the node-exporter textfile collector."""
        registry = CollectorRegistry()
        phase_gauge = Gauge(
            "hostdeploy_phase_duration_seconds",
            "Duration of each deployment phase in the last run",
            ["phase"],
            registry=registry,
        )
        for name, duration_ns in self.phase_durations_ns.items():
            phase_gauge.labels(phase=name).set(duration_ns / 1_000_000_000.0)

        if self.end_ns is not None:
            Gauge(
                "hostdeploy_run_duration_seconds",
                "Duration of the last deployment run",
                registry=registry,
            ).set((self.end_ns - self.start_ns) / 1_000_000_000.0)

        Gauge(
            "hostdeploy_run_exit_code",
            "Exit code of the last deployment run",
            registry=registry,
        ).set(exit_code)

        path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), registry)
