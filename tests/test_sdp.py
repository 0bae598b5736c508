"""Tests for SDP summaries and logging setup."""

import logging
from pathlib import Path

from livesignal.core.logging import setup_logging
from livesignal.signaling.sdp import summarize_sdp
from tests.fake_peer import fake_sdp


SAMPLE_SDP = """v=0
o=- 4611731400430051336 2 IN IP4 127.0.0.1
s=-
t=0 0
a=group:BUNDLE 0 1
m=audio 9 UDP/TLS/RTP/SAVPF 111
a=mid:0
a=sendrecv
a=candidate:1 1 udp 2130706431 192.168.1.10 50000 typ host
a=candidate:2 1 udp 1694498815 203.0.113.5 50000 typ srflx raddr 192.168.1.10 rport 50000
m=video 9 UDP/TLS/RTP/SAVPF 96
a=mid:1
a=recvonly
a=end-of-candidates
"""


def test_summarize_sections() -> None:
    summary = summarize_sdp(SAMPLE_SDP)

    assert summary.origin_session_id == "4611731400430051336"
    assert summary.origin_version == "2"
    assert [(m.media_type, m.mid, m.direction) for m in summary.media] == [
        ("audio", "0", "sendrecv"),
        ("video", "1", "recvonly"),
    ]
    assert summary.candidate_count == 2
    assert summary.end_of_candidates


def test_summarize_ignores_garbage() -> None:
    summary = summarize_sdp("not sdp\r\nx\r\na=candidate:ignored before any media\r\n")

    assert summary.media == []
    assert summary.candidate_count == 0
    assert summary.origin_version is None


def test_log_fields() -> None:
    fields = summarize_sdp(fake_sdp("offer", "client", 3, tracks=2)).as_log_fields()

    assert fields == {"media": ["video", "video"], "candidates": 0, "sdp_version": "3"}


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    log_file = setup_logging(level="debug", log_format="json", log_dir=tmp_path / "logs")

    assert log_file is not None
    assert log_file.parent == tmp_path / "logs"
    assert log_file.name.startswith("livesignal_")
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_console_only() -> None:
    assert setup_logging(level="WARNING") is None
    assert logging.getLogger().level == logging.WARNING
