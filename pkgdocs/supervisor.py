"""Run a command while enforcing an inactivity timeout on its output."""

from __future__ import annotations

import codecs
import os
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import IO, Callable, List, Mapping, Optional, Sequence, TextIO

from .logging import get_logger

logger = get_logger("supervisor")

_CHUNK_SIZE = 8192
_READER_GRACE_SECONDS = 5.0

OutputCallback = Callable[[str], None]


class OutputBuffer:
    """Thread-safe text buffer filled by a pipe reader and drained by the monitor."""

    def __init__(self) -> None:
        self._chunks: List[str] = []
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self._chunks.append(text)

    def take(self) -> str:
        with self._lock:
            text = "".join(self._chunks)
            self._chunks.clear()
        return text


class SupervisedProcess:
    """A running command plus the monitor that watches its output."""

    def __init__(self, process: subprocess.Popen, name: str, *, new_session: bool) -> None:
        self.process = process
        self.name = name
        self.completed = threading.Event()
        self._new_session = new_session
        self._timed_out = False
        self._monitor: Optional[threading.Thread] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def running(self) -> bool:
        return self.process.poll() is None

    def wait(self, timeout: float | None = None) -> Optional[int]:
        """Reap the process and wait for the monitor's final flush."""
        returncode = self.process.wait(timeout=timeout)
        if self._monitor is not None:
            self._monitor.join(timeout)
        return returncode

    def terminate(self) -> None:
        """Kill the process and, on POSIX, everything it spawned."""
        if self.process.poll() is not None and not self._new_session:
            return
        try:
            if self._new_session:
                os.killpg(self.process.pid, signal.SIGKILL)
            else:
                self.process.kill()
        except ProcessLookupError:
            pass
        except OSError as exc:
            logger.debug("Could not kill %s: %s", self.name, exc)

    def _mark_timed_out(self) -> None:
        self._timed_out = True


def run_with_timeout(
    command: Sequence[str],
    *,
    log: Path | str | TextIO | None = None,
    timeout: float = 5 * 60,
    name: str = "",
    wait_time: float = 1.0,
    verbose: bool = True,
    on_output: OutputCallback | None = None,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> SupervisedProcess:
    """Run ``command`` and pipe all of its output to ``log``.

    The process is killed once ``timeout`` seconds pass without any output on
    stdout or stderr; every chunk of output restarts the clock. ``log`` may be
    a path (opened and closed here) or an open stream (flushed, left open).
    ``name`` labels the process in log messages, and ``verbose`` toggles the
    start/kill/completion messages. ``on_output`` receives every drained chunk.

    Returns immediately; use :meth:`SupervisedProcess.wait` to block.
    """
    new_session = os.name == "posix"
    process = subprocess.Popen(
        list(command),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        start_new_session=new_session,
    )
    supervised = SupervisedProcess(process, name or str(command[0]), new_session=new_session)

    buffers = (OutputBuffer(), OutputBuffer())
    readers = [
        threading.Thread(target=_pump, args=(process.stdout, buffers[0]), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, buffers[1]), daemon=True),
    ]
    for reader in readers:
        reader.start()

    monitor = threading.Thread(
        target=_monitor,
        args=(supervised, buffers, readers),
        kwargs={
            "log": log,
            "timeout": timeout,
            "wait_time": wait_time,
            "verbose": verbose,
            "on_output": on_output,
        },
        name=f"pkgdocs-monitor-{process.pid}",
        daemon=True,
    )
    supervised._monitor = monitor
    monitor.start()
    return supervised


def _pump(stream: IO[bytes], buffer: OutputBuffer) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    read = getattr(stream, "read1", stream.read)
    try:
        while True:
            chunk = read(_CHUNK_SIZE)
            if not chunk:
                break
            buffer.append(decoder.decode(chunk))
        buffer.append(decoder.decode(b"", final=True))
    finally:
        stream.close()


def _open_log(log: Path | str | TextIO | None) -> tuple[TextIO, bool]:
    if log is None:
        return sys.stdout, False
    if isinstance(log, (str, Path)):
        try:
            return open(log, "w", encoding="utf-8"), True
        except OSError as exc:
            logger.error("Error opening logfile %s, falling back to stdout: %s", log, exc)
            return sys.stdout, False
    return log, False


def _drain(
    buffers: tuple[OutputBuffer, OutputBuffer],
    io: TextIO,
    on_output: OutputCallback | None,
) -> bool:
    produced = False
    for buffer in buffers:
        text = buffer.take()
        if not text:
            continue
        produced = True
        io.write(text)
        if on_output is not None:
            try:
                on_output(text)
            except Exception:
                logger.exception("Output callback failed")
    return produced


def _monitor(
    supervised: SupervisedProcess,
    buffers: tuple[OutputBuffer, OutputBuffer],
    readers: List[threading.Thread],
    *,
    log: Path | str | TextIO | None,
    timeout: float,
    wait_time: float,
    verbose: bool,
    on_output: OutputCallback | None,
) -> None:
    io, owns_log = _open_log(log)
    name = supervised.name
    started = time.monotonic()
    try:
        if verbose:
            logger.info("starting %s", name)
        last_output = started
        while supervised.running():
            if _drain(buffers, io, on_output):
                last_output = time.monotonic()
            elif time.monotonic() - last_output > timeout:
                if verbose:
                    logger.info("killing %s after %.1fs without output", name, timeout)
                supervised._mark_timed_out()
                supervised.terminate()
                break
            time.sleep(wait_time)
        if verbose:
            logger.info("%s completed in %.1f seconds", name, time.monotonic() - started)
    except Exception as exc:
        logger.error("Error while running %s with timeout: %s", name, exc)
        supervised.terminate()
    finally:
        try:
            supervised.process.wait(timeout=_READER_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit after being killed", name)
        for reader in readers:
            reader.join(_READER_GRACE_SECONDS)
        try:
            _drain(buffers, io, on_output)
            io.flush()
        finally:
            if owns_log:
                io.close()
            supervised.completed.set()


__all__ = ["OutputBuffer", "SupervisedProcess", "run_with_timeout"]
