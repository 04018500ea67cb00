"""PTY session — one interactive shell per conversation key."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import shlex
import signal
import struct
import subprocess
import termios
from dataclasses import dataclass, field
from typing import Callable, Union

from termbridge.config import TargetConfig
from termbridge.errors import SpawnError
from termbridge.pty.buffer import RollingBuffer
from termbridge.tool.truncation import clean_terminal_text

logger = logging.getLogger(__name__)

CTRL_C = "\x03"
_LINE_TERMINATORS = ("\n", "\r")
_ERASE = ("\x7f", "\b")


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


@dataclass(frozen=True)
class OutputChunk:
    """Raw terminal output, escape sequences included."""

    data: str


@dataclass(frozen=True)
class ProcessExit:
    """Delivered exactly once per session when the process terminates."""

    exit_code: int
    signal: int | None = None


SessionEvent = Union[OutputChunk, ProcessExit]

OUTPUT_QUEUE_SIZE = 1024


@dataclass
class SpawnSpec:
    """Everything needed to start a session shell inside a container."""

    container: str
    shell: str = "/bin/bash"
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 100
    rows: int = 30
    sentinel: str = "docker-terminal"
    exec_flags: str = "-it"
    term: str = "xterm-256color"

    @classmethod
    def from_target(cls, target: TargetConfig, **overrides) -> SpawnSpec:
        """Build a spec from the configured target.

        Forwarded env vars are read from the host environment at spawn time;
        unset ones are forwarded empty so the container sees a stable set.
        """
        if not target.container:
            raise ValueError("target has no container configured")
        spec = cls(
            container=target.container,
            shell=target.shell,
            cwd=target.cwd,
            env={name: os.environ.get(name, "") for name in target.forward_env},
            cols=target.cols,
            rows=target.rows,
            sentinel=target.sentinel,
            exec_flags=target.exec_flags,
            term=target.term,
        )
        for name, value in overrides.items():
            setattr(spec, name, value)
        return spec

    @property
    def prompt(self) -> str:
        """PS1 that ends with the sentinel once escapes are stripped."""
        return (
            r"\[\e[34m\]\w\[\e[0m\] "
            rf"\[\e[32m\]{self.sentinel}\[\e[0m\] "
        )

    def to_command(self) -> list[str]:
        """The `docker exec` argv that starts the session shell."""
        shell_args = "-i"
        if os.path.basename(self.shell) == "bash":
            shell_args = "--norc --noprofile -i"
        script = (
            "stty -icanon && stty -opost && "
            f"export PS1={shlex.quote(self.prompt)} && "
            f"exec {shlex.quote(self.shell)} {shell_args}"
        )
        command = ["docker", "exec", *shlex.split(self.exec_flags)]
        for name, value in self.env.items():
            command += ["-e", f"{name}={value}"]
        command += ["-e", f"TERM={self.term}", self.container, self.shell, "-c", script]
        return command


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): make the PTY slave (fd 0) the
    # controlling terminal so Ctrl-C reaches the foreground process group.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _evict(q: asyncio.Queue) -> None:
    # Make room for the end-of-stream marker in a full queue.
    while not q.empty():
        q.get_nowait()
    q.put_nowait(None)


def _exit_from_returncode(returncode: int) -> ProcessExit:
    # Popen reports signal deaths as -signum; shells report 128 + signum.
    if returncode < 0:
        return ProcessExit(exit_code=128 - returncode, signal=-returncode)
    return ProcessExit(exit_code=returncode)


@dataclass
class PTYSession:
    """A managed pseudo-terminal session for one conversation.

    Wraps an interactive shell with:
    - Process group isolation (start_new_session) for safe tree-killing
    - One reader task that owns the output stream and fans it out to
      per-consumer queues (live viewers, in-flight agent commands)
    - Command detection: a non-empty line written by a human, or an agent
      command dispatched with ``begin_command``, marks a command as
      started; the prompt sentinel in later output marks it as finished
    - Bounded per-consumer queues; a consumer that stops draining is
      dropped and its queue ends with ``None``
    - Idempotent kill and exactly-once exit delivery

    Sentinel detection is a substring heuristic on raw chunks.  A command
    whose own output contains the sentinel ends early, and a sentinel split
    across two chunks is missed.
    """

    key: str
    command: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 100
    rows: int = 30
    sentinel: str = "docker-terminal"

    buffer: RollingBuffer = field(default_factory=RollingBuffer)
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pid: int = field(default=0, init=False)
    _pgid: int = field(default=0, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _status: PTYStatus = field(default=PTYStatus.RUNNING, init=False)
    _subscribers: list[asyncio.Queue[SessionEvent | None]] = field(
        default_factory=list, init=False
    )
    _input_buffer: str = field(default="", init=False)
    _in_command: bool = field(default=False, init=False)
    _exit: ProcessExit | None = field(default=None, init=False)
    _on_exit: Callable[[PTYSession, ProcessExit], None] | None = field(
        default=None, init=False
    )
    _on_command_start: Callable[[PTYSession, str], None] | None = field(
        default=None, init=False
    )
    _on_command_end: Callable[[PTYSession], None] | None = field(
        default=None, init=False
    )

    @classmethod
    def from_spec(cls, key: str, spec: SpawnSpec) -> PTYSession:
        return cls(
            key=key,
            command=spec.to_command(),
            cwd=spec.cwd,
            cols=spec.cols,
            rows=spec.rows,
            sentinel=spec.sentinel,
        )

    def set_callbacks(
        self,
        on_exit: Callable[[PTYSession, ProcessExit], None] | None = None,
        on_command_start: Callable[[PTYSession, str], None] | None = None,
        on_command_end: Callable[[PTYSession], None] | None = None,
    ) -> None:
        """Wire lifecycle notifications.

        ``on_exit`` fires once whether the process died on its own or was
        killed, while ``in_command`` still shows a command it cut short.
        The command callbacks fire from input/output heuristics.
        """
        self._on_exit = on_exit
        self._on_command_start = on_command_start
        self._on_command_end = on_command_end

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group.

        Raises:
            SpawnError: if the process could not be started.
        """
        master_fd, slave_fd = pty.openpty()
        _set_winsize(slave_fd, self.cols, self.rows)
        env = {**os.environ, **self.env}

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                env=env,
                cwd=self.cwd,
            )
        except Exception as e:
            os.close(master_fd)
            raise SpawnError(self.command, e) from e
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pid = self._proc.pid
        self._pgid = os.getpgid(self._pid)
        self._status = PTYStatus.RUNNING

        self.buffer.attach_loop(asyncio.get_running_loop())
        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info(
            "PTY session %s started: pid=%d pgid=%d cmd=%s",
            self.key,
            self._pid,
            self._pgid,
            " ".join(self.command),
        )

    async def _read_loop(self) -> None:
        """Continuously read output from the PTY master fd."""
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while self._status == PTYStatus.RUNNING:
                try:
                    data = await loop.run_in_executor(
                        None, os.read, self._master_fd, 4096
                    )
                except OSError:
                    break

                if not data:
                    break

                text = decoder.decode(data)
                if text:
                    self.feed_output(text)
        except Exception as e:
            logger.debug("PTY reader %s ended: %s", self.key, e)
        finally:
            if self._status == PTYStatus.RUNNING:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self.feed_output(tail)
                self._status = PTYStatus.EXITED
                exit_event = await loop.run_in_executor(None, self._reap)
                logger.info(
                    "PTY session %s exited (code=%s signal=%s)",
                    self.key,
                    exit_event.exit_code,
                    exit_event.signal,
                )
                self._close_fd()
                self._deliver_exit(exit_event)

    def feed_output(self, text: str) -> None:
        """Process one chunk of output from the process.

        Ends the running command when the chunk carries the sentinel,
        appends to the scroll buffer, and fans the raw chunk out to every
        subscriber queue.
        """
        if self._in_command and self.sentinel in text:
            self._in_command = False
            self._notify_command_end()

        self.buffer.append_text(clean_terminal_text(text))

        self._publish(OutputChunk(data=text))

    def _publish(self, event: SessionEvent) -> None:
        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Output subscriber for session %s is not draining, dropping it",
                    self.key,
                )
                self._subscribers.remove(q)
                _evict(q)

    def _reap(self) -> ProcessExit:
        if self._proc is None:
            return ProcessExit(exit_code=-1)
        try:
            returncode = self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("PTY session %s closed its tty but is still alive", self.key)
            self._killpg()
            returncode = self._proc.wait()
        return _exit_from_returncode(returncode)

    def _deliver_exit(self, exit_event: ProcessExit) -> None:
        if self._exit is not None:
            return
        self._exit = exit_event
        self._publish(exit_event)
        # on_exit still sees in_command, so it can end a command cut short.
        try:
            if self._on_exit:
                self._on_exit(self, exit_event)
        except Exception:
            logger.exception("Error in on_exit callback for session %s", self.key)
        finally:
            self._in_command = False

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def write(self, data: str | bytes, track: bool = True) -> bool:
        """Send input to the process without blocking.

        With ``track`` set, input is scanned for completed command lines.
        Agent-issued commands are written untracked because the executor
        reports their start and end itself.

        Returns False (after logging) if the session is gone or the write
        failed.
        """
        if self._status != PTYStatus.RUNNING:
            logger.warning("Write to session %s ignored: %s", self.key, self._status.value)
            return False

        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        raw = data if isinstance(data, bytes) else data.encode()

        try:
            os.write(self._master_fd, raw)
        except OSError as e:
            logger.warning("Write to session %s failed: %s", self.key, e)
            return False

        if track:
            self._track_input(text)
        return True

    def _track_input(self, text: str) -> None:
        for ch in text:
            if ch in _LINE_TERMINATORS:
                line = clean_terminal_text(self._input_buffer).strip()
                self._input_buffer = ""
                if line:
                    self.begin_command(line)
            elif ch in _ERASE:
                self._input_buffer = self._input_buffer[:-1]
            elif ch == CTRL_C:
                self._input_buffer = ""
            else:
                self._input_buffer += ch

    def begin_command(self, command: str) -> None:
        """Mark ``command`` as running until the sentinel or the exit."""
        self._in_command = True
        self._notify_command_start(command)

    def finish_command(self) -> None:
        """End the running command without waiting for the sentinel.

        A no-op when no command is running, so the end is reported once.
        """
        if not self._in_command:
            return
        self._in_command = False
        self._notify_command_end()

    def _notify_command_start(self, command: str) -> None:
        if self._on_command_start:
            try:
                self._on_command_start(self, command)
            except Exception:
                logger.exception("Error in command start callback for %s", self.key)

    def _notify_command_end(self) -> None:
        if self._on_command_end:
            try:
                self._on_command_end(self)
            except Exception:
                logger.exception("Error in command end callback for %s", self.key)

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the terminal.  Failures are logged, never raised."""
        if self._status != PTYStatus.RUNNING or self._master_fd < 0:
            return False
        try:
            _set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            logger.warning("Failed to resize session %s: %s", self.key, e)
            return False
        self.cols, self.rows = cols, rows
        return True

    def terminate(self) -> bool:
        """Send Ctrl-C to the foreground process group.

        The byte goes through the terminal line discipline (or the container
        runtime's raw tty forwarding), so the shell itself survives.  Returns
        whether the interrupt could be delivered.
        """
        self._input_buffer = ""
        return self.write(CTRL_C, track=False)

    def clear(self) -> None:
        """Reset the scroll buffer."""
        self.buffer.clear()

    # ------------------------------------------------------------------
    # Output subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self, maxsize: int = OUTPUT_QUEUE_SIZE
    ) -> asyncio.Queue[SessionEvent | None]:
        """Subscribe to output and exit events.

        A subscription taken after the process exited receives the exit
        event immediately.  A subscriber whose queue fills up is dropped and
        receives ``None``; ``maxsize=0`` makes the queue unbounded.
        """
        q: asyncio.Queue[SessionEvent | None] = asyncio.Queue(maxsize=maxsize)
        if self._exit is not None:
            q.put_nowait(self._exit)
        else:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    async def wait_for_prompt(self, timeout: float = 5.0) -> bool:
        """Wait for the sentinel prompt to appear in the scroll buffer."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if any(self.sentinel in line for line in self.buffer.read_tail(5)):
                return True
            if not self.alive:
                return False
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self.buffer.wait_for_data(timeout=min(remaining, 0.5))
        logger.warning("Timed out waiting for shell prompt in session %s", self.key)
        return False

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _killpg(self) -> None:
        try:
            os.killpg(self._pgid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except Exception as e:
            logger.warning("Error killing PTY session %s: %s", self.key, e)

    def _close_fd(self) -> None:
        if self._master_fd < 0:
            return
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    def kill(self) -> None:
        """Kill the entire process tree.  Calling it again is a no-op.

        Never blocks the event loop: the exit is delivered immediately and
        the killed process is reaped on an executor thread.
        """
        if self._status not in (PTYStatus.RUNNING, PTYStatus.KILLING):
            return

        self._status = PTYStatus.KILLING
        if self._proc is not None:
            self._killpg()
            logger.info("Killed PTY session %s (pgid=%d)", self.key, self._pgid)
            self._reap_killed()

        self._close_fd()
        self._status = PTYStatus.KILLED
        self._deliver_exit(_exit_from_returncode(-signal.SIGKILL))

    def _reap_killed(self) -> None:
        proc = self._proc
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to stall: reap inline.
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("Session %s did not die within 2s of SIGKILL", self.key)
            return
        loop.run_in_executor(None, proc.wait)

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def in_command(self) -> bool:
        return self._in_command

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def exit(self) -> ProcessExit | None:
        return self._exit
