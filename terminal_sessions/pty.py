from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import pty
import select
import signal
import struct
import termios
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

READ_CHUNK = 65536
WRITE_WAIT = 0.1

DataListener = Callable[[bytes], Any]
ExitListener = Callable[[Optional[int], Optional[int]], Any]


def _winsize(cols: int, rows: int) -> bytes:
    return struct.pack("HHHH", max(1, rows), max(1, cols), 0, 0)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is already the pty slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtyProcess:
    """A child process attached to the slave side of a pseudo-terminal.

    Output is read from the master fd on the event loop and handed to data
    listeners as raw bytes. Exit listeners fire once with ``(exit_code,
    signal)`` after the child is reaped and remaining output is drained.
    """

    def __init__(self, proc: asyncio.subprocess.Process, master_fd: int, argv: Sequence[str]) -> None:
        self._proc = proc
        self.master_fd = master_fd
        self.argv = list(argv)
        self._data_listeners: List[DataListener] = []
        self._exit_listeners: List[ExitListener] = []
        self._reading = False
        self._closed = False
        # Guards the fd against close() while a worker thread writes.
        self._fd_lock = threading.Lock()
        self._waiter: Optional[asyncio.Task] = None
        self.exit_code: Optional[int] = None
        self.exit_signal: Optional[int] = None

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def exited(self) -> bool:
        return self._proc.returncode is not None

    def on_data(self, listener: DataListener) -> None:
        self._data_listeners.append(listener)

    def on_exit(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    def clear_listeners(self) -> None:
        self._data_listeners.clear()
        self._exit_listeners.clear()

    def start(self) -> None:
        if self._waiter is not None:
            return
        loop = asyncio.get_running_loop()
        os.set_blocking(self.master_fd, False)
        loop.add_reader(self.master_fd, self._on_readable)
        self._reading = True
        self._waiter = loop.create_task(self._wait())

    # ------------------------------------------------------------------
    # I/O

    def _read_available(self) -> bool:
        """Read whatever the master fd holds. Returns False once the slave side is gone."""
        while True:
            try:
                data = os.read(self.master_fd, READ_CHUNK)
            except BlockingIOError:
                return True
            except OSError as exc:
                # Linux reports EIO once every slave fd is closed.
                if exc.errno != errno.EIO:
                    logger.debug("pty read failed for pid %s: %s", self.pid, exc)
                return False
            if not data:
                return False
            for listener in list(self._data_listeners):
                try:
                    listener(data)
                except Exception:
                    logger.exception("pty data listener failed for pid %s", self.pid)

    def _on_readable(self) -> None:
        if not self._read_available():
            self._stop_reading()

    def _stop_reading(self) -> None:
        if not self._reading:
            return
        self._reading = False
        try:
            asyncio.get_running_loop().remove_reader(self.master_fd)
        except (RuntimeError, ValueError, OSError):
            pass

    async def _wait(self) -> None:
        rc = await self._proc.wait()
        if self._reading and not self._closed:
            self._read_available()
        self.close()
        if rc is not None and rc < 0:
            self.exit_code, self.exit_signal = None, -rc
        else:
            self.exit_code, self.exit_signal = rc, None
        for listener in list(self._exit_listeners):
            try:
                result = listener(self.exit_code, self.exit_signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("pty exit listener failed for pid %s", self.pid)

    def write(self, data: Union[bytes, str]) -> int:
        """Write all of ``data``, waiting while the pty buffer is full.

        Safe to call from a worker thread. Raises ``OSError(EBADF)`` if the
        pty is closed before or during the write.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        view = memoryview(data)
        written = 0
        while True:
            with self._fd_lock:
                if self._closed:
                    raise OSError(errno.EBADF, "pty is closed")
                if written >= len(view):
                    return written
                try:
                    written += os.write(self.master_fd, view[written:])
                    continue
                except BlockingIOError:
                    pass
            try:
                select.select([], [self.master_fd], [], WRITE_WAIT)
            except (OSError, ValueError):
                # The fd was closed under us; the check above reports it.
                pass

    def resize(self, cols: int, rows: int) -> None:
        if self._closed:
            raise OSError(errno.ENOTTY, "pty is closed")
        fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, _winsize(cols, rows))

    def kill(self, sig: int = signal.SIGTERM) -> None:
        if self.exited:
            raise ProcessLookupError(errno.ESRCH, f"process {self.pid} already exited")
        os.kill(self.pid, sig)

    def close(self) -> None:
        if self._closed:
            return
        self._stop_reading()
        with self._fd_lock:
            self._closed = True
            try:
                os.close(self.master_fd)
            except OSError:
                pass


class PtySpawner(Protocol):
    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str,
        env: Dict[str, str],
        cols: int,
        rows: int,
    ) -> Any: ...


class LocalPtySpawner:
    """Creates processes on a fresh pty pair via asyncio subprocesses."""

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str,
        env: Dict[str, str],
        cols: int,
        rows: int,
    ) -> PtyProcess:
        master_fd, slave_fd = await asyncio.to_thread(pty.openpty)
        try:
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, _winsize(cols, rows))
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)
        logger.debug("Spawned %s on pty (pid %s, %sx%s)", argv[0], proc.pid, cols, rows)
        return PtyProcess(proc, master_fd, argv)
