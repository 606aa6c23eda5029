#!/usr/bin/env python3
"""
hls_ui.py - Terminal dashboard for the HLS helper scripts.

Renders a live curses TUI around a hls_runner.JobSupervisor:
  - Input file, script, pass-through arguments and working directory
  - Overall progress bar across all resolutions, current resolution and ETA
  - Scrollable log of everything the script and ffmpeg print

Usage:
    python hls_ui.py <video-name-or-path> [-q preset] [-r 1440,1080,720] [-hw] [-t] [-basic]

Press Enter to start, q to cancel a running job (or quit when idle).
Takes the same flags as hls_runner.py.
"""

import collections
import curses
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from hls_runner import (
    VERSION,
    EventKind,
    JobSupervisor,
    LaunchPlan,
    Session,
    SessionState,
    build_parser,
    plan_from_args,
    probe_duration,
    setup_logging,
)

# ---------------------------------------------------------------------------
# Constants / layout
# ---------------------------------------------------------------------------

REFRESH_HZ  = 4      # screen redraws per second
LOG_LINES   = 2000   # lines kept for the log viewport
INFO_ROWS   = 8      # info box height including borders
PROG_ROWS   = 4

KEY_ENTER = (curses.KEY_ENTER, 10, 13)

# Color pair IDs
C_NORMAL    = 0
C_HEADER    = 1
C_ACCENT    = 2
C_SUCCESS   = 3
C_FAIL      = 4
C_WARN      = 5
C_DIM       = 6
C_BAR_FILL  = 7
C_BAR_EMPTY = 8
C_BORDER    = 9
C_TITLE     = 10

# Box-drawing chars (UTF-8)
H  = "─"
V  = "│"
TL = "┌"
TR = "┐"
BL = "└"
BR = "┘"
BLOCK_FULL  = "█"
BLOCK_LIGHT = "░"
ARROW = "▶"

logger = logging.getLogger("hls_ui")


# ---------------------------------------------------------------------------
# Log buffer
# ---------------------------------------------------------------------------

class LogBuffer:
    """Thread-safe ring of log lines, appended by the pump thread, read by the renderer."""

    def __init__(self, maxlen: int = LOG_LINES) -> None:
        self._lock = threading.Lock()
        self._lines: collections.deque = collections.deque(maxlen=maxlen)

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


# ---------------------------------------------------------------------------
# Dashboard state
# ---------------------------------------------------------------------------

class DashboardApp:
    """
    Owns the current JobSupervisor and the thread that consumes its events.
    The render loop only reads snapshot() and the log buffer.
    """

    def __init__(self, plan: LaunchPlan, duration_sec: int) -> None:
        self.plan         = plan
        self.duration_sec = duration_sec
        self.log          = LogBuffer()
        self.scroll       = 0   # lines scrolled up from the bottom
        self.supervisor: Optional[JobSupervisor] = None
        self._pump: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._pump is not None and self._pump.is_alive()

    def snapshot(self) -> Session:
        if self.supervisor is None:
            return Session(total_jobs=self.plan.total_jobs)
        return self.supervisor.snapshot()

    def start(self) -> bool:
        """Start a fresh run. Returns False while one is still going."""
        if self.running:
            return False
        if self.supervisor is not None:
            self.log.append("")
        self.scroll = 0
        self.supervisor = JobSupervisor(
            duration_sec=self.duration_sec, total_jobs=self.plan.total_jobs
        )
        self.supervisor.start(
            self.plan.executable, list(self.plan.argv), self.plan.work_dir,
            script=self.plan.script,
        )
        self._pump = threading.Thread(
            target=self._pump_events, args=(self.supervisor,), daemon=True, name="hls-pump"
        )
        self._pump.start()
        return True

    def cancel(self) -> None:
        if self.supervisor is not None:
            self.supervisor.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the pump thread has seen the terminal event."""
        if self._pump is None:
            return True
        self._pump.join(timeout)
        return not self._pump.is_alive()

    def _pump_events(self, supervisor: JobSupervisor) -> None:
        while True:
            event = supervisor.next_event()
            if event.kind is EventKind.LINE:
                logger.debug(event.line)
                self.log.append(event.line)
            if event.terminal:
                if event.error is not None:
                    self.log.append(f"error: {event.error}")
                return

    def handle_key(self, key: int) -> bool:
        """Apply one key press. Returns True when the UI should exit."""
        if key in (ord("q"), ord("Q")):
            if self.running:
                self.cancel()
                return False
            return True
        if key in KEY_ENTER:
            if not self.running:
                self.start()
        elif key == curses.KEY_UP:
            self.scroll = min(self.scroll + 1, max(0, len(self.log) - 1))
        elif key == curses.KEY_DOWN:
            self.scroll = max(0, self.scroll - 1)
        elif key == curses.KEY_PPAGE:
            self.scroll = min(self.scroll + 10, max(0, len(self.log) - 1))
        elif key == curses.KEY_NPAGE:
            self.scroll = max(0, self.scroll - 10)
        elif key == curses.KEY_END:
            self.scroll = 0
        return False


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def fmt_duration(seconds: float) -> str:
    seconds = int(seconds)
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    if h:
        return f"{h}h{m:02d}m{s:02d}s"
    elif m:
        return f"{m}m{s:02d}s"
    return f"{s}s"


def truncate(s: str, w: int) -> str:
    if w <= 0:
        return ""
    if len(s) <= w:
        return s
    return s[:w-1] + "…"  # ellipsis


def eta_text(snap: Session) -> str:
    if snap.state is not SessionState.RUNNING:
        return "---"
    elapsed = snap.elapsed
    if snap.percent > 0.01 and elapsed > 5:
        return fmt_duration(elapsed / snap.percent - elapsed)
    return "---"


def footer_text(snap: Session, running: bool) -> str:
    if running:
        return "Running… press q to cancel"
    if snap.done:
        return "Job finished. Press Enter to run again, q to exit"
    return "Press Enter to start, q to quit"


def jobs_text(snap: Session) -> str:
    if snap.total_jobs <= 0:
        return "single job"
    current = snap.jobs_done if snap.done else min(snap.jobs_done + 1, snap.total_jobs)
    return f"job {current}/{snap.total_jobs}"


# ---------------------------------------------------------------------------
# Drawing helpers
# ---------------------------------------------------------------------------

def init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()

    # Color 8 (dark gray) only exists on 256-color terminals
    dim_fg = 8 if curses.COLORS >= 256 else curses.COLOR_WHITE

    curses.init_pair(C_HEADER,    curses.COLOR_BLACK,  curses.COLOR_CYAN)
    curses.init_pair(C_ACCENT,    curses.COLOR_CYAN,   -1)
    curses.init_pair(C_SUCCESS,   curses.COLOR_GREEN,  -1)
    curses.init_pair(C_FAIL,      curses.COLOR_RED,    -1)
    curses.init_pair(C_WARN,      curses.COLOR_YELLOW, -1)
    curses.init_pair(C_DIM,       dim_fg,              -1)
    curses.init_pair(C_BAR_FILL,  curses.COLOR_CYAN,   -1)
    curses.init_pair(C_BAR_EMPTY, dim_fg,              -1)
    curses.init_pair(C_BORDER,    curses.COLOR_CYAN,   -1)
    curses.init_pair(C_TITLE,     curses.COLOR_WHITE,  -1)


def safe_addstr(win, y: int, x: int, text: str, attr: int = 0) -> None:
    """addstr that silently clips at window boundaries."""
    h, w = win.getmaxyx()
    if y < 0 or y >= h or x >= w:
        return
    if x < 0:
        text = text[-x:]
        x = 0
    available = w - x - 1
    if available <= 0:
        return
    try:
        win.addstr(y, x, text[:available], attr)
    except curses.error:
        pass


def draw_box(win, y: int, x: int, h: int, w: int, title: str = "") -> None:
    if h < 2 or w < 2:
        return
    battr = curses.color_pair(C_BORDER)
    safe_addstr(win, y,         x, TL + H * (w - 2) + TR, battr)
    safe_addstr(win, y + h - 1, x, BL + H * (w - 2) + BR, battr)
    for row in range(1, h - 1):
        safe_addstr(win, y + row, x,         V, battr)
        safe_addstr(win, y + row, x + w - 1, V, battr)
    if title:
        safe_addstr(win, y, x + 2, f" {title} ", curses.color_pair(C_TITLE) | curses.A_BOLD)


def draw_hbar(win, y: int, x: int, width: int, frac: float) -> None:
    filled = max(0, min(width, int(width * frac)))
    safe_addstr(win, y, x,          BLOCK_FULL  * filled,
        curses.color_pair(C_BAR_FILL) | curses.A_BOLD)
    safe_addstr(win, y, x + filled, BLOCK_LIGHT * (width - filled),
        curses.color_pair(C_BAR_EMPTY))


# ---------------------------------------------------------------------------
# Screen sections
# ---------------------------------------------------------------------------

def draw_header(win, snap: Session) -> int:
    """Title bar. Returns next Y."""
    h, w = win.getmaxyx()
    attr  = curses.color_pair(C_HEADER) | curses.A_BOLD
    title = f"  {ARROW} HLS COMPRESSOR  v{VERSION}  "
    right = f" elapsed: {fmt_duration(snap.elapsed)} "
    safe_addstr(win, 0, 0, " " * w, attr)
    safe_addstr(win, 0, 0, title, attr)
    safe_addstr(win, 0, w - len(right) - 1, right, attr)
    return 1


def draw_info(win, y: int, app: DashboardApp, snap: Session) -> int:
    h, w = win.getmaxyx()
    plan = app.plan
    draw_box(win, y, 0, INFO_ROWS, w, "JOB")

    if snap.state is SessionState.FAILED:
        sattr = curses.color_pair(C_FAIL) | curses.A_BOLD
    elif snap.state is SessionState.FINISHED:
        sattr = curses.color_pair(C_SUCCESS) | curses.A_BOLD
    else:
        sattr = curses.color_pair(C_ACCENT)

    dur = fmt_duration(app.duration_sec) if app.duration_sec else "unknown"
    rows = [
        ("File",    f"{plan.name}   (duration {dur})", curses.color_pair(C_TITLE) | curses.A_BOLD),
        ("Script",  Path(plan.script).name,            curses.color_pair(C_TITLE)),
        ("Status",  snap.status,                       sattr),
        ("Args",    " ".join(plan.script_args),        curses.color_pair(C_DIM)),
        ("WorkDir", plan.work_dir,                     curses.color_pair(C_DIM)),
        ("Probe",   f"{plan.probe_path}   pass: {plan.first_arg}", curses.color_pair(C_DIM)),
    ]
    for i, (label, value, attr) in enumerate(rows):
        safe_addstr(win, y + 1 + i, 2, f"{label:<8}", curses.color_pair(C_DIM))
        safe_addstr(win, y + 1 + i, 11, truncate(value, w - 13), attr)
    return y + INFO_ROWS


def draw_progress(win, y: int, snap: Session) -> int:
    h, w = win.getmaxyx()
    draw_box(win, y, 0, PROG_ROWS, w, "OVERALL PROGRESS")
    bar_w = max(1, w - 12)
    draw_hbar(win, y + 1, 2, bar_w, snap.percent)
    safe_addstr(win, y + 1, 2 + bar_w, f" {snap.percent * 100:5.1f}%",
        curses.color_pair(C_ACCENT) | curses.A_BOLD)

    res = f"{snap.current_res}p" if snap.current_res else "---"
    stats = (
        f"  {ARROW} {jobs_text(snap)}"
        f"   res={res}"
        f"   job={snap.job_fraction * 100:5.1f}%"
        f"   ETA {eta_text(snap)}"
    )
    safe_addstr(win, y + 2, 1, truncate(stats, w - 2), curses.color_pair(C_DIM))
    return y + PROG_ROWS


def draw_log(win, y: int, app: DashboardApp, rows: int) -> int:
    h, w = win.getmaxyx()
    if rows < 3:
        return y
    lines = app.log.lines()
    view  = rows - 2
    end   = max(0, len(lines) - app.scroll)
    start = max(0, end - view)
    title = "LOG" if app.scroll == 0 else f"LOG  (+{app.scroll})"
    draw_box(win, y, 0, rows, w, title)
    for i, line in enumerate(lines[start:end]):
        attr = curses.color_pair(C_FAIL) if line.startswith("error:") else curses.color_pair(C_NORMAL)
        safe_addstr(win, y + 1 + i, 2, truncate(line, w - 4), attr)
    return y + rows


def draw_footer(win, app: DashboardApp, snap: Session) -> None:
    h, w = win.getmaxyx()
    y = h - 1
    if snap.error is not None and not app.running:
        attr = curses.color_pair(C_FAIL) | curses.A_BOLD
        safe_addstr(win, y - 1, 0, truncate(f"  {snap.error_text}", w - 1), attr)
    if snap.state is SessionState.FINISHED and not app.running:
        attr = curses.color_pair(C_SUCCESS) | curses.A_BOLD
    else:
        attr = curses.color_pair(C_HEADER)
    msg = f"  {footer_text(snap, app.running)}   [arrows/PgUp/PgDn] Scroll log  "
    safe_addstr(win, y, 0, " " * (w - 1), attr)
    safe_addstr(win, y, 0, truncate(msg, w - 1), attr)


# ---------------------------------------------------------------------------
# Main curses rendering loop
# ---------------------------------------------------------------------------

def render_loop(stdscr, app: DashboardApp, stop: threading.Event) -> None:
    init_colors()
    curses.curs_set(0)
    stdscr.keypad(True)
    stdscr.timeout(int(1000 / REFRESH_HZ))

    while not stop.is_set():
        key = stdscr.getch()
        if key != -1 and app.handle_key(key):
            break

        snap = app.snapshot()
        stdscr.erase()
        h, w = stdscr.getmaxyx()

        y = draw_header(stdscr, snap)
        y = draw_info(stdscr, y, app, snap)
        y = draw_progress(stdscr, y, snap)
        # Footer + error line at the bottom
        draw_log(stdscr, y, app, rows=h - y - 2)
        draw_footer(stdscr, app, snap)

        stdscr.noutrefresh()
        curses.doupdate()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser(prog="hls-tui").parse_args(argv)
    # Console logging would tear the curses screen
    setup_logging(args.log, verbose=args.verbose, console=False)

    plan = plan_from_args(args)
    duration = probe_duration(plan.probe_path, args.ffprobe)
    logger.info(f"Dashboard for {plan.name}: duration={duration}s jobs={plan.total_jobs}")

    app  = DashboardApp(plan, duration)
    stop = threading.Event()

    def handle_signal(signum, frame):
        stop.set()
        app.cancel()

    signal.signal(signal.SIGTERM, handle_signal)

    try:
        curses.wrapper(render_loop, app, stop)
    except KeyboardInterrupt:
        pass
    finally:
        app.cancel()

    if not app.wait(timeout=15):
        print("Script did not stop in time; it may still be running.")
    snap = app.snapshot()
    print(f"\nSession ended: {snap.status} ({snap.percent * 100:.1f}%)")
    if snap.error is not None:
        print(f"Error: {snap.error_text}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
