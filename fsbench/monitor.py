# monitor.py
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import psutil

from fsbench.config import (
    CPU_SAMPLE_INTERVAL, EXPORTER_IMAGE, EXPORTER_LISTEN, EXPORTER_NAME,
    STACK_CONTAINERS,
)
from fsbench.errors import MonitoringUnavailable
from fsbench.utils import shell


def log(msg):
    print(f"[Monitor] {msg}")


# ───────── telemetry stack ────────────────────────────────────────────────
class ComposeStack:
    """prometheus + grafana + node-exporter from docker-compose.yml."""

    name = "compose"

    def __init__(self, compose_dir):
        self.compose_dir = Path(compose_dir)

    def _compose(self, *args):
        if shutil.which("docker-compose"):
            base = ["docker-compose"]
        else:
            base = ["docker", "compose"]
        return base + ["-f", str(self.compose_dir / "docker-compose.yml")] + list(args)

    def start(self):
        if not (self.compose_dir / "docker-compose.yml").is_file():
            raise MonitoringUnavailable(f"no docker-compose.yml in {self.compose_dir}")
        if shell(self._compose("up", "-d"), check=False).returncode == 0:
            return
        log("WARNING: first compose attempt failed, cleaning up and retrying...")
        shell(self._compose("down"), check=False)
        if shell(self._compose("up", "-d"), check=False).returncode != 0:
            raise MonitoringUnavailable("compose stack failed after retry")

    def stop(self):
        if shell(self._compose("down"), check=False).returncode != 0:
            raise MonitoringUnavailable("compose down failed")


class NodeExporter:
    """Single exporter container, no compose needed."""

    name = "exporter"

    @staticmethod
    def running():
        res = shell(["docker", "ps", "--format", "{{.Names}}"], check=False, capture=True)
        return res.returncode == 0 and EXPORTER_NAME in res.stdout.split()

    def start(self):
        if self.running():
            log("Node exporter is already running.")
            return
        cmd = [
            "docker", "run", "-d", "--rm",
            "--name", EXPORTER_NAME,
            "--net=host", "--pid=host",
            "-v", "/proc:/host/proc:ro",
            "-v", "/sys:/host/sys:ro",
            "-v", "/:/rootfs:ro",
            EXPORTER_IMAGE,
            "--path.procfs=/host/proc",
            "--path.sysfs=/host/sys",
            f"--web.listen-address={EXPORTER_LISTEN}",
        ]
        if shell(cmd, check=False).returncode != 0:
            raise MonitoringUnavailable("node exporter container failed to start")
        log(f"Node exporter started, metrics at http://{EXPORTER_LISTEN}/metrics")

    def stop(self):
        if not self.running():
            return
        if shell(["docker", "stop", EXPORTER_NAME], check=False).returncode != 0:
            raise MonitoringUnavailable("docker stop node exporter failed")


class NoMonitoring:
    name = "none"

    def start(self):
        log("WARNING: proceeding without monitoring, telemetry will be missing")

    def stop(self):
        pass


@dataclass
class MonitoringHandle:
    strategy: str
    failed: List[str] = field(default_factory=list)


class MonitoringController:
    """
    Tries each strategy in order until one starts. The last one is always
    the no-op, so start() cannot fail and stop() never raises.
    """

    def __init__(self, strategies):
        self.strategies = list(strategies)
        if not self.strategies or self.strategies[-1].name != NoMonitoring.name:
            self.strategies.append(NoMonitoring())

    @classmethod
    def for_settings(cls, settings):
        if not settings.monitoring:
            return cls([])
        return cls([ComposeStack(settings.compose_dir), NodeExporter()])

    def start(self) -> MonitoringHandle:
        failed = []
        for strategy in self.strategies:
            try:
                strategy.start()
            except (MonitoringUnavailable, OSError, subprocess.SubprocessError) as e:
                log(f"WARNING: {strategy.name} monitoring unavailable: {e}")
                failed.append(strategy.name)
                continue
            log(f"Monitoring started ({strategy.name}).")
            return MonitoringHandle(strategy.name, failed)
        # unreachable while the no-op closes the chain
        return MonitoringHandle(NoMonitoring.name, failed)

    def stop(self, handle: MonitoringHandle):
        names = [s.name for s in self.strategies]
        upto = names.index(handle.strategy) if handle.strategy in names else len(names) - 1
        attempted = stopped = 0
        for strategy in reversed(self.strategies[:upto + 1]):
            if strategy.name == NoMonitoring.name:
                continue
            attempted += 1
            try:
                strategy.stop()
                stopped += 1
            except (MonitoringUnavailable, OSError, subprocess.SubprocessError) as e:
                log(f"WARNING: stopping {strategy.name} failed: {e}")
        if attempted and not stopped:
            log("Attempting direct container removal as last resort...")
            try:
                shell(["docker", "rm", "-f"] + STACK_CONTAINERS, check=False)
            except OSError as e:
                log(f"ERROR: container removal failed: {e}")


# ───────── per-process CPU sampling ───────────────────────────────────────
def monitor_process_cpu(proc, stop_event, cpu_usages, sample_interval=CPU_SAMPLE_INTERVAL):
    """
    Monitors total CPU usage of proc and its children.
    """
    try:
        p = psutil.Process(proc.pid)

        # Warm-up
        p.cpu_percent(interval=None)
        time.sleep(0.3)
        for sub in [p] + p.children(recursive=True):
            try:
                sub.cpu_percent(interval=None)
            except psutil.NoSuchProcess:
                continue

        while not stop_event.is_set():
            usage = 0.0
            for child in [p] + p.children(recursive=True):
                try:
                    usage += child.cpu_percent(interval=0.1)
                except psutil.NoSuchProcess:
                    continue
            cpu_usages.append((time.time(), usage))
            stop_event.wait(max(sample_interval - 0.1, 0.0))

    except psutil.Error as e:
        log(f"CPU monitoring stopped: {e}")


def trim_and_average(samples, trim_ratio=0.1):
    """
    Trims first/last X% and computes average and total CPU usage.
    """
    if not samples:
        return 0.0, 0.0
    usage_values = [s[1] for s in samples]
    n = len(usage_values)
    start = int(n * trim_ratio)
    end = int(n * (1 - trim_ratio))
    trimmed = usage_values[start:end] if end > start else usage_values
    avg = sum(trimmed) / len(trimmed) if trimmed else 0.0
    return round(avg, 2), round(sum(trimmed), 2)


def run_with_cpu_monitoring(cmd, sample_interval=CPU_SAMPLE_INTERVAL):
    """
    Runs cmd while sampling its CPU usage.
    Returns: returncode, output, avg_cpu, total_cpu
    """
    cpu_usages = []
    stop_event = threading.Event()

    print("[RUN]", *cmd)
    proc = subprocess.Popen([str(c) for c in cmd], stdout=subprocess.PIPE,
                            stderr=subprocess.STDOUT, text=True)
    monitor_thread = threading.Thread(
        target=monitor_process_cpu,
        args=(proc, stop_event, cpu_usages, sample_interval),
    )
    monitor_thread.start()
    try:
        output, _ = proc.communicate()
    finally:
        stop_event.set()
        monitor_thread.join()

    avg_cpu, total_cpu = trim_and_average(cpu_usages)
    return proc.returncode, output, avg_cpu, total_cpu
