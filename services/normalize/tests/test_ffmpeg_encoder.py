from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from services.normalize.application.interfaces import EncodeProfile
from services.normalize.domain.errors import TranscodeError
from services.normalize.infrastructure import ffmpeg


def _writing_run(recorded):
    def fake_run(cmd, capture_output, timeout):
        recorded["cmd"] = cmd
        recorded["timeout"] = timeout

        class _Result:
            returncode = 0
            stderr = b""

        Path(cmd[-1]).write_bytes(b"encoded")
        return _Result()

    return fake_run


def _source(tmp_path) -> Path:
    source = tmp_path / "input_xyz789"
    source.write_bytes(b"data")
    return source


def test_mp4_profile_scales_shrink_only_with_faststart(tmp_path, monkeypatch):
    recorded = {}
    monkeypatch.setattr(ffmpeg.subprocess, "run", _writing_run(recorded))
    encoder = ffmpeg.FFmpegMediaEncoder(max_width=1280)

    result = encoder.encode(
        _source(tmp_path), tmp_path / "output.mp4", EncodeProfile.MP4, timeout=90
    )

    cmd = recorded["cmd"]
    assert result == tmp_path / "output.mp4"
    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-vf") + 1] == "scale='min(1280,iw)':-2,format=yuv420p"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert recorded["timeout"] == 90


def test_silent_mp4_drops_audio(tmp_path, monkeypatch):
    recorded = {}
    monkeypatch.setattr(ffmpeg.subprocess, "run", _writing_run(recorded))

    ffmpeg.FFmpegMediaEncoder().encode(
        _source(tmp_path), tmp_path / "output.mp4", EncodeProfile.MP4_SILENT
    )

    assert "-an" in recorded["cmd"]
    assert "-c:a" not in recorded["cmd"]


def test_webm_profile_uses_vp9_and_opus(tmp_path, monkeypatch):
    recorded = {}
    monkeypatch.setattr(ffmpeg.subprocess, "run", _writing_run(recorded))

    ffmpeg.FFmpegMediaEncoder(max_width=640).encode(
        _source(tmp_path), tmp_path / "output.webm", EncodeProfile.WEBM
    )

    cmd = recorded["cmd"]
    assert cmd[cmd.index("-vf") + 1] == "scale='min(640,iw)':-2"
    assert cmd[cmd.index("-c:v") + 1] == "libvpx-vp9"
    assert cmd[cmd.index("-c:a") + 1] == "libopus"


def test_poster_seeks_one_second_before_input(tmp_path, monkeypatch):
    recorded = {}
    monkeypatch.setattr(ffmpeg.subprocess, "run", _writing_run(recorded))

    ffmpeg.FFmpegMediaEncoder().encode(
        tmp_path / "output.mp4", tmp_path / "poster.jpg", EncodeProfile.POSTER
    )

    cmd = recorded["cmd"]
    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-ss") + 1] == "1"
    assert cmd[cmd.index("-vframes") + 1] == "1"


def test_first_frame_poster_does_not_seek(tmp_path, monkeypatch):
    recorded = {}
    monkeypatch.setattr(ffmpeg.subprocess, "run", _writing_run(recorded))

    ffmpeg.FFmpegMediaEncoder().encode(
        tmp_path / "output.mp4", tmp_path / "poster.jpg", EncodeProfile.POSTER_FIRST_FRAME
    )

    assert "-ss" not in recorded["cmd"]


def test_encoder_raises_on_failure(tmp_path, monkeypatch):
    class _Result:
        returncode = 1
        stderr = b"boom"

    monkeypatch.setattr(ffmpeg.subprocess, "run", lambda *args, **kwargs: _Result())

    with pytest.raises(TranscodeError, match="boom"):
        ffmpeg.FFmpegMediaEncoder().encode(
            _source(tmp_path), tmp_path / "output.mp4", EncodeProfile.MP4
        )


def test_encoder_timeout_is_a_tool_failure(tmp_path, monkeypatch):
    def slow_run(cmd, capture_output, timeout):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(ffmpeg.subprocess, "run", slow_run)

    with pytest.raises(TranscodeError, match="timed out"):
        ffmpeg.FFmpegMediaEncoder().encode(
            _source(tmp_path), tmp_path / "output.webm", EncodeProfile.WEBM, timeout=1
        )


def test_encoder_rejects_missing_output(tmp_path, monkeypatch):
    class _Result:
        returncode = 0
        stderr = b""

    monkeypatch.setattr(ffmpeg.subprocess, "run", lambda *args, **kwargs: _Result())

    with pytest.raises(TranscodeError, match="no output"):
        ffmpeg.FFmpegMediaEncoder().encode(
            _source(tmp_path), tmp_path / "poster.jpg", EncodeProfile.JPEG
        )
