"""Headless CLI tests using a stand-in enhanced_hls.sh."""

import os
import stat

import pytest

import hls_runner as runner
from hls_runner import Session, SessionState

posix_only = pytest.mark.skipif(os.name == "nt", reason="needs /bin/sh")

FAKE_SCRIPT = """#!/bin/sh
echo "input: $1"
echo "Converting to 1080p (1/2)..."
printf 'frame=  100 fps=50 time=00:00:50.00 bitrate=1k\\r' >&2
printf 'frame=  200 fps=50 time=00:01:40.00 bitrate=1k\\r' >&2
echo "Converting to 720p (2/2)..."
printf 'frame=  100 fps=50 time=00:00:30.00 bitrate=1k\\r' >&2
exit ${FAKE_EXIT:-0}
"""


def write_script(directory, name="enhanced_hls.sh", body=FAKE_SCRIPT):
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(runner, "probe_duration", lambda path, ffprobe_bin="ffprobe": 100)
    monkeypatch.delenv("FAKE_EXIT", raising=False)
    return tmp_path


@posix_only
def test_main_success(workdir, capsys):
    write_script(workdir)
    rc = runner.main(["talk", "--scripts-dir", str(workdir), "-r", "1080,720"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "100.0%" in out


@posix_only
def test_main_basic_script(workdir):
    write_script(workdir, name="hls_script.sh", body="#!/bin/sh\necho \"basic $*\"\n")
    assert runner.main(["-basic", "talk", "-t", "--scripts-dir", str(workdir)]) == 0


@posix_only
def test_main_script_failure(workdir, monkeypatch):
    write_script(workdir)
    monkeypatch.setenv("FAKE_EXIT", "2")
    assert runner.main(["talk", "--scripts-dir", str(workdir)]) == 1


def test_main_missing_script(workdir):
    assert runner.main(["talk", "--scripts-dir", str(workdir)]) == 1


def test_progress_bar_render():
    bar = runner.ProgressBar(width=10)
    snap = Session(
        total_jobs=3, jobs_done=1, current_res=1080, percent=0.5,
        status="frame=1 time=00:00:10.00", state=SessionState.RUNNING,
    )
    text = bar.render(snap)
    assert text.startswith("\r[#####-----]")
    assert " 50.0%" in text
    assert "job 2/3" in text
    assert "1080p" in text


def test_progress_bar_truncates_long_status():
    bar = runner.ProgressBar(width=4)
    text = bar.render(Session(status="x" * 200))
    assert "x" * 60 not in text
    assert "…" in text


def test_progress_bar_silent(capsys):
    runner.ProgressBar(silent=True).print(Session())
    assert capsys.readouterr().out == ""
