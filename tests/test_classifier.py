"""Tests for the RBus heuristic classifier"""
import pytest

from rbus_dissector.engine.classifier import classify, looks_like_rbus
from rbus_dissector.engine.encoder import build_message, build_request


def test_accepts_request():
    verdict = classify(build_request("Device.X", ["Comp1", 0, "METHOD_GETPARAMETERVALUES", "", "", 0]))
    assert verdict
    assert verdict.reason is None


def test_accepts_at_offset():
    data = b"\x00" * 5 + build_message("test")
    assert looks_like_rbus(data, offset=5)
    assert not looks_like_rbus(data)


@pytest.mark.parametrize(
    "frame,reason",
    [
        (build_message("test", opening_marker=0xBBBB), "opening marker 0xbbbb"),
        (build_message("test", version=3), "version 3"),
        (build_message("test", header_length=31), "header length 31"),
        (build_message("test", header_length=4097), "header length 4097"),
        (build_message("test", payload_length=10 * 1024 * 1024 + 1), "payload length 10485761"),
    ],
)
def test_rejects(frame, reason):
    verdict = classify(frame)
    assert not verdict
    assert verdict.reason == reason


def test_boundaries_accepted():
    assert classify(build_message("test", header_length=32))
    assert classify(build_message("test", header_length=4096))
    assert classify(build_message("test", payload_length=10 * 1024 * 1024))


def test_short_prefix_rejected():
    verdict = classify(build_message("test")[:21])
    assert not verdict
    assert verdict.reason == "need at least 22 bytes"
