"""Web backend tests through FastAPI's TestClient."""

import json
import os
import stat
import time

import pytest
from fastapi.testclient import TestClient

from backend import main

posix_only = pytest.mark.skipif(os.name == "nt", reason="needs /bin/sh")

FAKE_SCRIPT = """#!/bin/sh
echo "Converting to 1080p (1/3)..."
printf 'frame=1 time=00:00:50.00\\r' >&2
echo "Converting to 720p (2/3)..."
echo "Converting to 480p (3/3)..."
"""

SLOW_SCRIPT = """#!/bin/sh
echo ready
sleep 30
"""


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "CONFIG_FILE", tmp_path / "config" / "hls_settings.json")
    monkeypatch.setattr(main, "service", main.HlsService())
    monkeypatch.setattr(main, "probe_duration", lambda path, ffprobe_bin="ffprobe": 100)
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def media(tmp_path):
    """A scripts dir and an input file; returns a config payload pointing at them."""
    videos = tmp_path / "videos"
    videos.mkdir()
    (videos / "talk.mp4").write_bytes(b"")
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    return {
        "input":       str(videos / "talk.mp4"),
        "scripts_dir": str(scripts),
        "quality":     "fast",
        "resolutions": "1080,720,480",
    }


def install_script(cfg: dict, body: str) -> None:
    path = os.path.join(cfg["scripts_dir"], "enhanced_hls.sh")
    with open(path, "w") as f:
        f.write(body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def wait_until_idle(client, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.get("/api/status").json()
        if status["service_status"] != "running":
            return status
        time.sleep(0.05)
    raise AssertionError("session still running")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_config_defaults(client):
    cfg = client.get("/api/config").json()
    assert cfg["input"] == ""
    assert cfg["quality"] == "balanced"
    assert cfg["resolutions"] == "1440,1080,720"
    assert cfg["basic"] is False


def test_config_roundtrip(client, media):
    r = client.post("/api/config", json=media)
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    cfg = client.get("/api/config").json()
    assert cfg["input"] == media["input"]
    assert cfg["quality"] == "fast"
    with open(main.CONFIG_FILE) as f:
        assert json.load(f)["scripts_dir"] == media["scripts_dir"]


def test_config_normalizes_resolutions(client):
    client.post("/api/config", json={"input": "talk", "resolutions": " 1080 , 720"})
    assert client.get("/api/config").json()["resolutions"] == "1080,720"


@pytest.mark.parametrize("bad", [
    {"input": "talk", "quality": "ultra"},
    {"input": "talk", "resolutions": "1080p"},
    {"quality": "fast"},
])
def test_config_validation(client, bad):
    assert client.post("/api/config", json=bad).status_code == 422


def test_config_keeps_ffprobe_override_when_omitted(client, monkeypatch):
    monkeypatch.setitem(main.DEFAULT_CONFIG, "ffprobe", "/opt/ffmpeg/bin/ffprobe")
    client.post("/api/config", json={"input": "talk"})
    assert client.get("/api/config").json()["ffprobe"] == "/opt/ffmpeg/bin/ffprobe"
    with open(main.CONFIG_FILE) as f:
        assert json.load(f)["ffprobe"] == "/opt/ffmpeg/bin/ffprobe"


def test_corrupt_config_falls_back_to_defaults(client):
    main.CONFIG_FILE.parent.mkdir(parents=True)
    main.CONFIG_FILE.write_text("{not json")
    assert client.get("/api/config").json()["quality"] == "balanced"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def test_status_when_idle(client):
    status = client.get("/api/status").json()
    assert status["service_status"] == "idle"
    assert status["pid"] is None
    assert status["plan"] is None
    assert status["session"]["percent"] == 0.0


def test_start_without_input(client):
    r = client.post("/api/session/start")
    assert r.status_code == 400
    assert "No input" in r.json()["detail"]


def test_start_with_missing_file(client, tmp_path):
    client.post("/api/config", json={"input": str(tmp_path / "nope.mp4")})
    r = client.post("/api/session/start")
    assert r.status_code == 400
    assert "does not exist" in r.json()["detail"]


def test_cancel_when_idle(client):
    assert client.post("/api/session/cancel").status_code == 400


@posix_only
def test_session_runs_to_completion(client, media):
    install_script(media, FAKE_SCRIPT)
    client.post("/api/config", json=media)

    r = client.post("/api/session/start")
    assert r.status_code == 200
    body = r.json()
    assert body["duration"] == 100
    assert body["plan"]["total_jobs"] == 3
    assert body["plan"]["script_args"] == ["-r", "1080,720,480", "-q", "fast"]

    status = wait_until_idle(client)
    assert status["service_status"] == "finished"
    assert status["session"]["percent"] == 1.0
    assert status["session"]["jobs_done"] == 3

    lines = client.get("/api/logs").json()["lines"]
    assert "Converting to 1080p (1/3)..." in lines
    assert client.get("/api/logs", params={"lines": 1}).json()["lines"] == [lines[-1]]


@posix_only
def test_session_cancel(client, media):
    install_script(media, SLOW_SCRIPT)
    client.post("/api/config", json=media)
    assert client.post("/api/session/start").status_code == 200

    # Only one session at a time
    assert client.post("/api/session/start").status_code == 400

    r = client.post("/api/session/cancel")
    assert r.status_code == 200
    session = r.json()["session"]
    assert session["state"] == "failed"
    assert session["error"] == "cancelled by user"
    assert client.get("/api/status").json()["service_status"] == "failed"


def test_missing_script_fails_session(client, media):
    client.post("/api/config", json=media)
    assert client.post("/api/session/start").status_code == 200
    status = wait_until_idle(client)
    assert status["service_status"] == "failed"
    assert "script not found" in status["session"]["error"]


# ---------------------------------------------------------------------------
# Probe + WebSocket
# ---------------------------------------------------------------------------

def test_probe(client):
    r = client.get("/api/probe", params={"path": "/media/talk.mp4"})
    assert r.json() == {"path": "/media/talk.mp4", "duration": 100}


def test_websocket_pushes_state(client):
    with client.websocket_connect("/ws") as ws:
        msg = ws.receive_json()
    assert msg["type"] == "state"
    assert msg["service_status"] == "idle"
    assert msg["log_tail"] == []
    assert "session" in msg
