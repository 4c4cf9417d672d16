from __future__ import annotations
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, TextIO
from .logging_setup import get_logger

log = get_logger("etl.launcher.proc")

@dataclass
class ProcessHandle:
    name: str
    proc: subprocess.Popen
    pump: Optional[threading.Thread] = field(default=None, repr=False)

def _open_log_file(path: Path) -> TextIO:
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "a", encoding="utf-8", buffering=1)

def _pump(stream, sinks: List[TextIO]) -> None:
    """Relay child output line by line to stdout and the per-process log file."""
    for line in iter(stream.readline, ""):
        for s in sinks:
            s.write(line)
            s.flush()
    stream.close()
    for s in sinks:
        if s is not sys.stdout:
            s.close()

class ProcessRunner:
    def __init__(self):
        self.handles: List[ProcessHandle] = []

    def start(self, name: str, cmd: List[str], *, cwd: Optional[Path] = None, log_file: Optional[Path] = None,
              env: Optional[dict] = None) -> ProcessHandle:
        log.info("Starting %s: %s", name, " ".join(cmd))
        proc = subprocess.Popen(
            cmd, cwd=str(cwd) if cwd else None, env=env,
            stdin=None, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            text=True, bufsize=1, errors="replace",
        )
        sinks: List[TextIO] = [sys.stdout]
        if log_file:
            sinks.append(_open_log_file(log_file))
        pump = threading.Thread(target=_pump, args=(proc.stdout, sinks), name=f"pump-{name}", daemon=True)
        pump.start()
        h = ProcessHandle(name=name, proc=proc, pump=pump)
        self.handles.append(h)
        return h

    def wait(self, handle: ProcessHandle) -> int:
        rc = handle.proc.wait()
        if handle.pump is not None:
            handle.pump.join(timeout=5)
        log.info("%s exited with rc=%s", handle.name, rc)
        return int(rc if rc is not None else 0)

    def forward_signals(self, handle: ProcessHandle) -> None:
        """Pass SIGTERM/SIGINT on to the child (docker stop, Ctrl+C)."""
        def _forward(signum, _frame):
            if handle.proc.poll() is None:
                log.info("Forwarding signal %s to %s (pid=%s)", signum, handle.name, handle.proc.pid)
                handle.proc.send_signal(signum)
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, _forward)

    def stop_all(self, timeout: float = 10.0) -> None:
        for h in self.handles:
            if h.proc.poll() is None:
                log.info("Stopping %s (pid=%s)", h.name, h.proc.pid)
                h.proc.terminate()
        for h in self.handles:
            if h.proc.poll() is None:
                try:
                    h.proc.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    log.warning("Killing %s (pid=%s)", h.name, h.proc.pid)
                    h.proc.kill()

    def status(self) -> dict:
        return {h.name: {"pid": h.proc.pid, "returncode": h.proc.poll()} for h in self.handles}
