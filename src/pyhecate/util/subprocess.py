from __future__ import annotations
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

POLL_INTERVAL = 0.05


@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False


def run_cmd(cmd: Sequence[str], cwd: str, timeout: Optional[float] = 120) -> CmdResult:
    start = time.monotonic()
    p = subprocess.run(
        list(cmd),
        cwd=cwd,
        text=True,
        errors="replace",
        capture_output=True,
        timeout=timeout,
        shell=False,
    )
    return CmdResult(p.returncode, p.stdout, p.stderr, duration=time.monotonic() - start)


def run_shell(
    command: str,
    cwd: str,
    timeout: float,
    cancelled: threading.Event | None = None,
) -> CmdResult:
    """Run ``sh -c command`` in its own process group.

    Hitting the timeout or seeing ``cancelled`` set kills the whole group;
    both are reported on the result, not raised.
    """
    start = time.monotonic()
    deadline = start + timeout
    p = subprocess.Popen(
        ["sh", "-c", command],
        cwd=cwd,
        text=True,
        errors="replace",
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    while True:
        try:
            out, err = p.communicate(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            stop = cancelled is not None and cancelled.is_set()
            if stop or time.monotonic() >= deadline:
                _kill_group(p)
                out, err = p.communicate()
                return CmdResult(
                    returncode=-1,
                    stdout=out or "",
                    stderr=err or "",
                    duration=time.monotonic() - start,
                    timed_out=not stop,
                    cancelled=stop,
                )
            continue
        return CmdResult(p.returncode, out, err, duration=time.monotonic() - start)


def _kill_group(p: subprocess.Popen) -> None:
    try:
        os.killpg(p.pid, signal.SIGKILL)
    except ProcessLookupError:
        # group already gone
        p.kill()
