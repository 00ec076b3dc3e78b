"""ffmpeg remux collaborator."""

import subprocess

import pytest

import remux
from remux import build_remux_command, ffmpeg_installed, remux_to_m4a
from stream_errors import FfmpegNotFoundError, RemuxError


def test_command_copies_audio_and_drops_metadata():
    cmd = build_remux_command("/tmp/in", "/music/out.m4a")

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "/tmp/in"
    assert cmd[cmd.index("-map_metadata") + 1] == "-1"
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert cmd[-1] == "/music/out.m4a"


def test_custom_ffmpeg_path():
    assert build_remux_command("a", "b", "/opt/ffmpeg")[0] == "/opt/ffmpeg"


def test_ffmpeg_installed_uses_search_path(monkeypatch):
    monkeypatch.setattr(remux.shutil, "which", lambda name: "/usr/bin/ffmpeg" if name == "ffmpeg" else None)

    assert ffmpeg_installed() is True
    assert ffmpeg_installed("avconv") is False


def test_remux_success(monkeypatch, tmp_path):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(remux.subprocess, "run", fake_run)

    result = remux_to_m4a(tmp_path / "in", tmp_path / "out.m4a")

    assert result == tmp_path / "out.m4a"
    assert calls[0][-1] == str(tmp_path / "out.m4a")


def test_remux_nonzero_exit(monkeypatch, tmp_path):
    monkeypatch.setattr(
        remux.subprocess, "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Invalid data found\n"),
    )

    with pytest.raises(RemuxError) as exc_info:
        remux_to_m4a(tmp_path / "in", tmp_path / "out.m4a")

    assert exc_info.value.returncode == 1
    assert exc_info.value.stderr == "Invalid data found"
    assert exc_info.value.stage == "remux"


def test_remux_missing_binary(monkeypatch, tmp_path):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(remux.subprocess, "run", missing)

    with pytest.raises(FfmpegNotFoundError):
        remux_to_m4a(tmp_path / "in", tmp_path / "out.m4a")
