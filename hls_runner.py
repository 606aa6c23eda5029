#!/usr/bin/env python3
"""
hls_runner.py - Progress supervisor for the HLS helper scripts.

Runs enhanced_hls.sh (or the basic hls_script.sh) as a subprocess, reads its
stdout and stderr as line streams, and folds two kinds of lines into one
overall percentage:

  - "Converting to <N>p (" printed by the script when it starts a resolution
  - ffmpeg "time=HH:MM:SS.xx" status updates, compared against the source
    duration reported by ffprobe

ffmpeg rewrites its status line in place with a bare carriage return, so the
streams are split on either \\n or \\r.

Used headless from the command line (text progress bar), or driven by
hls_ui.py (curses dashboard) and backend/main.py (web service).
"""

import argparse
import enum
import logging
import os
import queue
import re
import shlex
import signal
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterator, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VERSION = "1.0.0"

SCRIPT_ENHANCED = "enhanced_hls.sh"
SCRIPT_BASIC    = "hls_script.sh"

QUALITY_PRESETS     = ("fast", "balanced", "quality")
DEFAULT_QUALITY     = "balanced"
DEFAULT_RESOLUTIONS = "1440,1080,720"

# Inputs the scripts accept as-is; anything else gets ".mp4" appended.
PASSTHROUGH_EXTENSIONS = {".mp4", ".mov", ".m4v"}

CHANNEL_SIZE        = 256          # pending lines before readers block
MAX_RECORD_BYTES    = 1024 * 1024  # longest single line a pipe may carry
READ_CHUNK          = 64 * 1024
READER_JOIN_TIMEOUT = 10           # seconds to drain pipes after exit
KILL_GRACE_SEC      = 5            # SIGTERM -> SIGKILL escalation delay
PROBE_TIMEOUT       = 30

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

logger = logging.getLogger("hls_runner")


def setup_logging(log_path: Optional[str], verbose: bool = False, console: bool = True) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(message)s"
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_path:
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if not handlers:
        handlers.append(logging.NullHandler())
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=fmt, handlers=handlers)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SessionError(Exception):
    """Base class for everything that can end or dent a supervised session."""


class LaunchError(SessionError):
    """Script or executable missing, or the process could not be spawned."""


class StreamReadError(SessionError):
    """A pipe failed before EOF. Only that pipe stops; the session goes on."""


class RecordTooLongError(StreamReadError):
    pass


class SubprocessExitError(SessionError):
    def __init__(self, returncode: int) -> None:
        self.returncode = returncode
        if returncode < 0:
            msg = f"script killed by signal {-returncode}"
        else:
            msg = f"script exited with status {returncode}"
        super().__init__(msg)


class CancellationError(SessionError):
    def __init__(self, returncode: Optional[int] = None) -> None:
        self.returncode = returncode
        super().__init__("cancelled by user")


# ---------------------------------------------------------------------------
# Line splitting
# ---------------------------------------------------------------------------

_TERMINATOR_RE = re.compile(rb"[\r\n]")


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").strip()


def split_records(stream, max_record: int = MAX_RECORD_BYTES) -> Iterator[str]:
    """
    Yield trimmed text records from a binary stream.

    Either \\n or \\r ends a record, so a "\\r\\n" pair produces an empty
    record between the two; callers drop those. Whatever is still
    unterminated at EOF is yielded last.

    Raises RecordTooLongError when an unterminated record outgrows
    max_record, and StreamReadError when the read itself fails.
    """
    pending = b""
    while True:
        try:
            chunk = stream.read1(READ_CHUNK)
        except (OSError, ValueError) as e:
            raise StreamReadError(f"read failed: {e}") from e
        if not chunk:
            break
        pending += chunk
        start = 0
        for m in _TERMINATOR_RE.finditer(pending):
            yield _decode(pending[start:m.start()])
            start = m.end()
        pending = pending[start:]
        if len(pending) > max_record:
            raise RecordTooLongError(f"record exceeds {max_record} bytes")
    if pending:
        yield _decode(pending)


def _discard_rest(stream) -> None:
    """Read and drop everything up to EOF so the writer never sees a closed pipe."""
    try:
        while stream.read1(READ_CHUNK):
            pass
    except (OSError, ValueError):
        pass


def pump_lines(stream, sink: Callable[[str], None], name: str = "pipe") -> None:
    """
    Forward every non-empty record of stream to sink until EOF or a pipe error.

    An oversized record ends forwarding for this stream only: the rest is
    still read and dropped, so the script keeps running.
    """
    try:
        for record in split_records(stream):
            if record:
                sink(record)
    except RecordTooLongError as e:
        logger.warning(f"{name}: {e}; discarding the rest of this stream")
        _discard_rest(stream)
    except StreamReadError as e:
        logger.warning(f"{name}: {e}; ignoring the rest of this stream")
    finally:
        try:
            stream.close()
        except OSError:
            pass


# ---------------------------------------------------------------------------
# Progress parsing
# ---------------------------------------------------------------------------

# time=00:01:23.45
FF_TIME_RE   = re.compile(r"\btime=([0-9]{2}:[0-9]{2}:[0-9]{2}(?:\.[0-9]+)?)")
# The scripts announce each resolution with "Converting to 1080p (1/3)..."
JOB_START_RE = re.compile(r"^Converting to\s+([0-9]{3,4})p\s+\(")


def _to_int(s: str) -> int:
    try:
        return int(s.strip())
    except ValueError:
        return 0


def _to_float(s: str) -> float:
    try:
        return float(s.strip())
    except ValueError:
        return 0.0


def parse_hhmmss(s: str) -> int:
    """HH:MM:SS[.frac] -> whole seconds. Anything malformed counts as 0."""
    parts = s.split(":")
    if len(parts) != 3:
        return 0
    h = _to_int(parts[0])
    m = _to_int(parts[1])
    return int(h * 3600 + m * 60 + _to_float(parts[2]))


def detect_job_start(line: str) -> int:
    """Resolution height announced by a job-start line, or 0."""
    m = JOB_START_RE.match(line)
    if not m:
        return 0
    return _to_int(m.group(1))


def update_progress(duration_sec: int, line: str, current: float) -> float:
    """
    Fraction of duration_sec reached according to the first time= stamp in
    line, capped at 1.0. Returns current untouched when the duration is
    unknown, the line carries no stamp, or the stamp is zero.
    """
    if duration_sec <= 0:
        return current
    m = FF_TIME_RE.search(line)
    if not m:
        return current
    sec = parse_hhmmss(m.group(1))
    if sec <= 0:
        return current
    return min(1.0, sec / duration_sec)


# ---------------------------------------------------------------------------
# Session model
# ---------------------------------------------------------------------------

class SessionState(enum.Enum):
    IDLE     = "idle"
    STARTED  = "started"
    RUNNING  = "running"
    FINISHED = "finished"
    FAILED   = "failed"


class EventKind(enum.Enum):
    STARTED  = "started"
    LINE     = "line"
    FINISHED = "finished"
    FAILED   = "failed"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    line: str = ""
    error: Optional[SessionError] = None
    returncode: Optional[int] = None
    # Supervisor's own log line (command, cwd); shown but never parsed
    info: bool = False

    @property
    def terminal(self) -> bool:
        return self.kind in (EventKind.FINISHED, EventKind.FAILED)


@dataclass(frozen=True)
class Session:
    """
    Aggregate progress of one supervised run.

    Immutable: the supervisor swaps in a new Session for every event it
    consumes, so readers on other threads always see a consistent value.
    total_jobs == 0 means a single implicit job whose fraction is the
    overall percent.
    """
    total_jobs:   int = 0
    jobs_done:    int = 0
    current_res:  int = 0
    job_fraction: float = 0.0
    percent:      float = 0.0
    status:       str = "Ready"
    state:        SessionState = SessionState.IDLE
    error:        Optional[SessionError] = None
    returncode:   Optional[int] = None
    started_at:   Optional[float] = None
    ended_at:     Optional[float] = None

    @property
    def done(self) -> bool:
        return self.state in (SessionState.FINISHED, SessionState.FAILED)

    @property
    def error_text(self) -> str:
        return str(self.error) if self.error is not None else ""

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.ended_at if self.ended_at is not None else time.monotonic()
        return end - self.started_at

    def to_dict(self) -> dict:
        return {
            "state":        self.state.value,
            "status":       self.status,
            "percent":      round(self.percent, 4),
            "total_jobs":   self.total_jobs,
            "jobs_done":    self.jobs_done,
            "current_res":  self.current_res,
            "job_fraction": round(self.job_fraction, 4),
            "done":         self.done,
            "error":        self.error_text,
            "returncode":   self.returncode,
            "elapsed":      round(self.elapsed, 1),
        }


def apply_line(session: Session, line: str, duration_sec: int) -> Session:
    jobs_done   = session.jobs_done
    current_res = session.current_res
    fraction    = session.job_fraction

    res = detect_job_start(line)
    if res > 0 and res != current_res:
        # Pin the finished resolution at 100% before moving on
        if current_res != 0 and jobs_done < session.total_jobs:
            jobs_done += 1
        current_res = res
        fraction = 0.0

    fraction = update_progress(duration_sec, line, fraction)
    if session.total_jobs > 0:
        percent = min(1.0, (jobs_done + fraction) / session.total_jobs)
    else:
        percent = fraction

    return replace(
        session,
        jobs_done=jobs_done,
        current_res=current_res,
        job_fraction=fraction,
        percent=percent,
        status=line,
    )


def apply_event(session: Session, event: Event, duration_sec: int) -> Session:
    """Fold one supervisor event into the session."""
    if event.kind is EventKind.STARTED:
        return replace(session, state=SessionState.RUNNING, status="Encoding…")
    if event.kind is EventKind.LINE:
        if event.info:
            return session
        return apply_line(session, event.line, duration_sec)
    if event.kind is EventKind.FINISHED:
        jobs_done = session.total_jobs if session.total_jobs > 0 else session.jobs_done
        return replace(
            session,
            state=SessionState.FINISHED,
            jobs_done=jobs_done,
            job_fraction=1.0,
            percent=1.0,
            status="Done",
            returncode=event.returncode,
            ended_at=time.monotonic(),
        )
    return replace(
        session,
        state=SessionState.FAILED,
        status="Error",
        error=event.error,
        returncode=event.returncode,
        ended_at=time.monotonic(),
    )


# ---------------------------------------------------------------------------
# Process control
# ---------------------------------------------------------------------------

def locate_executable(command: str) -> Optional[str]:
    """Absolute path for command, looked up on PATH when it has no directory part."""
    if os.path.dirname(command):
        return os.path.abspath(command) if os.path.isfile(command) else None
    return shutil.which(command)


def terminate_process_tree(proc: subprocess.Popen, force: bool = False) -> None:
    """Signal the script and everything it spawned; ffmpeg runs as its child."""
    if proc.poll() is not None:
        return
    try:
        if os.name == "nt":
            subprocess.run(
                ["taskkill", "/PID", str(proc.pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        else:
            os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.warning(f"Process group signal failed for pid={proc.pid}: {e}")
        try:
            if force:
                proc.kill()
            else:
                proc.terminate()
        except OSError:
            pass


# ---------------------------------------------------------------------------
# Job supervisor
# ---------------------------------------------------------------------------

class JobSupervisor:
    """
    Runs one script invocation and turns its output into events.

    start() returns immediately. Two reader threads (stdout, stderr) and one
    exit-watcher thread feed a single bounded queue; next_event() is the only
    place the session changes, so whoever loops on it owns the state. The
    terminal event is queued only after the process has exited and both
    pipes are drained, so it is always the last event of a session.

    One instance per run: a failed or cancelled run is retried with a new
    JobSupervisor.
    """

    def __init__(
        self, duration_sec: int = 0, total_jobs: int = 0, channel_size: int = CHANNEL_SIZE
    ) -> None:
        if channel_size < 1:
            raise ValueError(f"channel_size must be at least 1, got {channel_size}")
        self.duration_sec = max(0, int(duration_sec))
        self._session     = Session(total_jobs=max(0, int(total_jobs)))
        self._events: queue.Queue = queue.Queue(maxsize=channel_size)
        self._proc: Optional[subprocess.Popen] = None
        self._readers: list[threading.Thread] = []
        self._watcher: Optional[threading.Thread] = None
        self._started   = False
        self._exited    = threading.Event()
        self._cancelled = threading.Event()
        self._lock      = threading.Lock()
        self._terminal: Optional[Event] = None

    # -- read side ---------------------------------------------------------

    def snapshot(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    # -- control -----------------------------------------------------------

    def start(
        self,
        command: str,
        args: list[str],
        working_dir: Optional[str] = None,
        *,
        script: Optional[str] = None,
    ) -> None:
        """
        Launch command with args in working_dir. script names the helper
        the command is expected to run (relevant when command is a shell
        wrapper); it must exist too.

        Only raises when called twice. Launch problems surface as a FAILED
        event carrying a LaunchError.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("session already started")
            self._started = True
            self._session = replace(
                self._session,
                state=SessionState.STARTED,
                status="Starting…",
                started_at=time.monotonic(),
            )
            try:
                self._proc = self._spawn(command, list(args), working_dir, script)
            except LaunchError as e:
                logger.error(f"Launch failed: {e}")
                self._exited.set()
                self._events.put(Event(EventKind.FAILED, error=e))
                return

        proc = self._proc
        cwd = working_dir or os.getcwd()
        logger.info(f"Script started (pid={proc.pid}) cwd={cwd}")
        # The queue may be full until someone calls next_event(), so the
        # announcements and the readers start on their own thread.
        announce = [
            Event(EventKind.STARTED),
            Event(EventKind.LINE, line=f"running: {shlex.join([command, *args])}", info=True),
            Event(EventKind.LINE, line=f"cwd: {cwd}", info=True),
        ]
        self._watcher = threading.Thread(
            target=self._run, args=(proc, announce), daemon=True, name="hls-wait",
        )
        self._watcher.start()

    def _run(self, proc: subprocess.Popen, announce: list[Event]) -> None:
        for event in announce:
            self._events.put(event)
        self._readers = [
            threading.Thread(
                target=pump_lines, args=(proc.stdout, self._put_line, "stdout"),
                daemon=True, name="hls-stdout",
            ),
            threading.Thread(
                target=pump_lines, args=(proc.stderr, self._put_line, "stderr"),
                daemon=True, name="hls-stderr",
            ),
        ]
        for t in self._readers:
            t.start()
        self._watch_exit()

    def next_event(self) -> Event:
        """
        Block until the next line, or the end of the session, and apply it.
        Once the terminal event has been returned it is returned again on
        every further call.
        """
        if self._terminal is not None:
            return self._terminal
        if not self._started:
            raise RuntimeError("session not started")
        event = self._events.get()
        self._session = apply_event(self._session, event, self.duration_sec)
        if event.terminal:
            self._terminal = event
        return event

    def cancel(self) -> None:
        """Terminate the script and its children. Safe to call at any time, any number of times."""
        with self._lock:
            if not self._started or self._exited.is_set() or self._cancelled.is_set():
                return
            self._cancelled.set()
            proc = self._proc
        logger.info(f"Cancelling script (pid={proc.pid})")
        terminate_process_tree(proc)
        threading.Thread(target=self._escalate, args=(proc,), daemon=True, name="hls-kill").start()

    # -- internals ---------------------------------------------------------

    def _spawn(
        self,
        command: str,
        args: list[str],
        working_dir: Optional[str],
        script: Optional[str],
    ) -> subprocess.Popen:
        if script is not None and not os.path.isfile(script):
            raise LaunchError(f"script not found: {script}")
        exe = locate_executable(command)
        if exe is None:
            raise LaunchError(f"executable not found: {command}")
        if working_dir and not os.path.isdir(working_dir):
            raise LaunchError(f"working directory does not exist: {working_dir}")

        kwargs: dict = {}
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Own process group, so cancel() reaches ffmpeg as well
            kwargs["start_new_session"] = True
        try:
            return subprocess.Popen(
                [exe, *args],
                cwd=working_dir or None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **kwargs,
            )
        except OSError as e:
            raise LaunchError(f"could not start {command}: {e}") from e

    def _put_line(self, line: str) -> None:
        self._events.put(Event(EventKind.LINE, line=line))

    def _watch_exit(self) -> None:
        proc = self._proc
        rc = proc.wait()
        self._exited.set()
        for t in self._readers:
            t.join(timeout=READER_JOIN_TIMEOUT)
            if t.is_alive():
                logger.warning(f"{t.name} still open after exit; a child process holds the pipe")

        if self._cancelled.is_set():
            logger.info(f"Script cancelled (rc={rc})")
            event = Event(EventKind.FAILED, error=CancellationError(rc), returncode=rc)
        elif rc != 0:
            err = SubprocessExitError(rc)
            logger.error(f"Script failed: {err}")
            event = Event(EventKind.FAILED, error=err, returncode=rc)
        else:
            logger.info("Script finished")
            event = Event(EventKind.FINISHED, returncode=rc)
        self._events.put(event)

    def _escalate(self, proc: subprocess.Popen) -> None:
        if self._exited.wait(KILL_GRACE_SEC):
            return
        logger.warning(f"Script still running {KILL_GRACE_SEC}s after SIGTERM, killing")
        terminate_process_tree(proc, force=True)


# ---------------------------------------------------------------------------
# Duration probe
# ---------------------------------------------------------------------------

def probe_duration(path: str, ffprobe_bin: str = "ffprobe") -> int:
    """Source duration in whole seconds, or 0 when ffprobe can't tell."""
    cmd = [
        ffprobe_bin, "-v", "quiet",
        "-show_entries", "format=duration",
        "-of", "csv=p=0",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=PROBE_TIMEOUT)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"ffprobe failed for {path}: {e}")
        return 0
    if result.returncode != 0:
        logger.warning(f"ffprobe exited {result.returncode} for {path}; progress disabled")
        return 0
    line = result.stdout.strip()
    if not line or line == "N/A":
        return 0
    try:
        return max(0, int(float(line)))
    except (ValueError, OverflowError):
        return 0


# ---------------------------------------------------------------------------
# Launch planning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LaunchPlan:
    name:        str
    input_token: str
    probe_path:  str
    first_arg:   str
    work_dir:    str
    script:      str
    script_args: tuple
    executable:  str
    argv:        tuple
    enhanced:    bool
    total_jobs:  int

    def to_dict(self) -> dict:
        return {
            "name":        self.name,
            "input":       self.input_token,
            "probe_path":  self.probe_path,
            "first_arg":   self.first_arg,
            "work_dir":    self.work_dir,
            "script":      self.script,
            "script_args": list(self.script_args),
            "executable":  self.executable,
            "argv":        list(self.argv),
            "enhanced":    self.enhanced,
            "total_jobs":  self.total_jobs,
        }


def script_name(enhanced: bool) -> str:
    return SCRIPT_ENHANCED if enhanced else SCRIPT_BASIC


def default_scripts_dir() -> Path:
    env = os.environ.get("HLS_SCRIPTS_DIR")
    if env:
        return Path(env).resolve()
    return Path(__file__).resolve().parent


def resolve_script(enhanced: bool, scripts_dir: Optional[str] = None) -> Path:
    base = Path(scripts_dir).resolve() if scripts_dir else default_scripts_dir()
    return base / script_name(enhanced)


def normalize_filename(arg: str) -> tuple[str, str]:
    """
    Accept "name", "name.mp4" or a path, return (name without extension,
    file to probe relative to the input's directory).
    """
    base = Path(arg).name
    stem, ext = os.path.splitext(base)
    if ext.lower() in PASSTHROUGH_EXTENSIONS:
        return stem, base
    return base, base + ".mp4"


def parse_resolutions(value: str) -> str:
    """argparse type for -r: comma-separated 3-4 digit heights, normalized."""
    heights = [p.strip() for p in value.split(",") if p.strip()]
    for h in heights:
        if not re.fullmatch(r"[0-9]{3,4}", h):
            raise argparse.ArgumentTypeError(f"invalid resolution {h!r} (expected e.g. 1080)")
    return ",".join(heights)


def count_jobs(resolutions: str) -> int:
    return len([p for p in resolutions.split(",") if p.strip()])


def build_script_args(
    enhanced: bool,
    overlay: bool = False,
    hw: bool = False,
    resolutions: str = DEFAULT_RESOLUTIONS,
    quality: str = DEFAULT_QUALITY,
) -> list[str]:
    """Flags after the input argument. The basic script only understands -t."""
    args: list[str] = []
    if overlay:
        args.append("-t")
    if not enhanced:
        return args
    if hw:
        args.append("-hw")
    if resolutions:
        args += ["-r", resolutions]
    if quality:
        args += ["-q", quality]
    return args


def resolve_launch_command(
    exe: str, args: list[str], platform: Optional[str] = None
) -> tuple[str, list[str]]:
    """(executable, argv) for running a shell script on the target platform."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        return "bash", ["-lc", shlex.join([exe, *args])]
    return exe, list(args)


def build_launch_plan(
    input_token: str,
    enhanced: bool = True,
    overlay: bool = False,
    hw: bool = False,
    resolutions: str = DEFAULT_RESOLUTIONS,
    quality: str = DEFAULT_QUALITY,
    scripts_dir: Optional[str] = None,
    platform: Optional[str] = None,
) -> LaunchPlan:
    name, probe_rel = normalize_filename(input_token)

    # The scripts look for their input in the current directory
    token_dir = os.path.dirname(input_token)
    if token_dir and token_dir != ".":
        work_dir = str(Path(token_dir).resolve())
    else:
        work_dir = os.getcwd()
    probe_path = str((Path(work_dir) / probe_rel).resolve())

    # A real .mp4 path is passed through whole; otherwise the script appends .mp4
    first_arg = probe_path if input_token.lower().endswith(".mp4") else name

    script = resolve_script(enhanced, scripts_dir)
    script_args = build_script_args(enhanced, overlay, hw, resolutions, quality)
    executable, argv = resolve_launch_command(str(script), [first_arg, *script_args], platform)

    return LaunchPlan(
        name=name,
        input_token=input_token,
        probe_path=probe_path,
        first_arg=first_arg,
        work_dir=work_dir,
        script=str(script),
        script_args=tuple(script_args),
        executable=executable,
        argv=tuple(argv),
        enhanced=enhanced,
        total_jobs=count_jobs(resolutions) if enhanced and resolutions else 0,
    )


# ---------------------------------------------------------------------------
# Progress bar
# ---------------------------------------------------------------------------

class ProgressBar:
    """Single-line terminal progress bar, redrawn in place after every event."""

    def __init__(self, width: int = 30, silent: bool = False) -> None:
        self.width = width
        self.silent = silent

    def render(self, snap: Session) -> str:
        filled = max(0, min(self.width, int(self.width * snap.percent)))
        bar = "#" * filled + "-" * (self.width - filled)
        jobs = ""
        if snap.total_jobs:
            jobs = f" job {min(snap.jobs_done + 1, snap.total_jobs)}/{snap.total_jobs}"
        res = f" {snap.current_res}p" if snap.current_res else ""
        status = snap.status if len(snap.status) <= 60 else snap.status[:59] + "…"
        return f"\r[{bar}] {snap.percent * 100:5.1f}%{jobs}{res}  {status}   "

    def print(self, snap: Session) -> None:
        if self.silent:
            return
        sys.stdout.write(self.render(snap))
        sys.stdout.flush()


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def build_parser(prog: str = "hls-runner") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description="Run the HLS helper scripts and report combined progress across resolutions.",
    )
    parser.add_argument("input", help="Video name or path: name, name.mp4 or /path/to/name.mp4")
    parser.add_argument("-q", dest="quality", default=DEFAULT_QUALITY, choices=QUALITY_PRESETS,
        help=f"Quality preset (default: {DEFAULT_QUALITY})")
    parser.add_argument("-r", dest="resolutions", default=DEFAULT_RESOLUTIONS, type=parse_resolutions,
        help=f"Comma-separated resolutions (default: {DEFAULT_RESOLUTIONS})")
    parser.add_argument("-hw", dest="hw", action="store_true",
        help="Enable hardware acceleration when available")
    parser.add_argument("-t", dest="overlay", action="store_true", help="Add text overlay")
    parser.add_argument("-basic", dest="basic", action="store_true",
        help="Use the basic script instead of the enhanced one")
    parser.add_argument("--scripts-dir", default=None,
        help="Directory holding the helper scripts (default: $HLS_SCRIPTS_DIR or next to this file)")
    parser.add_argument("--ffprobe", default=os.environ.get("FFPROBE_BIN", "ffprobe"),
        help="Path to ffprobe binary")
    parser.add_argument("--log", default=None, help="Log file path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every script line")
    return parser


def plan_from_args(args: argparse.Namespace) -> LaunchPlan:
    return build_launch_plan(
        args.input,
        enhanced=not args.basic,
        overlay=args.overlay,
        hw=args.hw,
        resolutions=args.resolutions,
        quality=args.quality,
        scripts_dir=args.scripts_dir,
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log, verbose=args.verbose)

    plan = plan_from_args(args)
    duration = probe_duration(plan.probe_path, args.ffprobe)
    logger.info(
        f"HLS run | input={plan.name} script={Path(plan.script).name} "
        f"args={' '.join(plan.script_args)} work_dir={plan.work_dir} "
        f"duration={duration}s jobs={plan.total_jobs}"
    )

    supervisor = JobSupervisor(duration_sec=duration, total_jobs=plan.total_jobs)
    progress = ProgressBar()
    supervisor.start(plan.executable, list(plan.argv), plan.work_dir, script=plan.script)

    def handle_signal(signum, frame):
        logger.info("Received stop signal, cancelling...")
        supervisor.cancel()

    previous = {
        sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        while True:
            event = supervisor.next_event()
            if event.kind is EventKind.LINE:
                logger.debug(event.line)
            progress.print(supervisor.snapshot())
            if event.terminal:
                break
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print()  # newline after progress bar

    snap = supervisor.snapshot()
    if snap.state is SessionState.FINISHED:
        logger.info(f"HLS run finished in {int(snap.elapsed)}s")
        return 0
    logger.error(f"HLS run failed: {snap.error_text}")
    if isinstance(snap.error, CancellationError):
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
