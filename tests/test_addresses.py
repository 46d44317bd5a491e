"""Tests for telemetry address resolution."""
from core.addresses import PropertyKind, ResolvedAddress, resolve_address


def test_file_time():
    r = resolve_address("/channel/1/stage/layer/10/file/time")
    assert (r.channel, r.layer, r.kind) == (1, 10, PropertyKind.TIME)
    assert r.property_path == "file/time"
    assert r.is_actionable


def test_producer_type():
    r = resolve_address("/channel/2/stage/layer/5/foreground/producer/type")
    assert (r.channel, r.layer, r.kind) == (2, 5, PropertyKind.PRODUCER_TYPE)


def test_not_a_layer_address():
    r = resolve_address("/foo/bar")
    assert r == ResolvedAddress()
    assert r.channel is None
    assert r.layer is None
    assert r.kind is PropertyKind.NONE
    assert not r.is_actionable


def test_channel_only():
    r = resolve_address("/channel/3/mixer/audio/volume")
    assert r.channel == 3
    assert r.layer is None
    assert not r.is_layer_address


def test_non_numeric_indices():
    assert resolve_address("/channel/abc/stage/layer/1/file/time").channel is None
    r = resolve_address("/channel/1/stage/layer/x/file/time")
    assert r.channel == 1
    assert r.layer is None


def test_kinds_by_last_segment():
    base = "/channel/1/stage/layer/20/"
    assert resolve_address(base + "file/frame").kind is PropertyKind.FRAME
    assert resolve_address(base + "paused").kind is PropertyKind.PAUSED
    assert resolve_address(base + "foreground/file/loop").kind is PropertyKind.LOOP
    assert resolve_address(base + "foreground/file/path").kind is PropertyKind.PATH


def test_type_without_producer_is_unrecognised():
    r = resolve_address("/channel/1/stage/layer/20/file/type")
    assert r.kind is PropertyKind.NONE
    assert r.is_layer_address
    assert not r.is_actionable


def test_unknown_property_keeps_indices():
    r = resolve_address("/channel/1/stage/layer/20/file/clip/name")
    assert (r.channel, r.layer) == (1, 20)
    assert r.kind is PropertyKind.NONE
    assert r.property_path == "file/clip/name"


def test_kind_values_match_wire_names():
    assert PropertyKind.PRODUCER_TYPE.value == "producerType"
    assert PropertyKind.NONE.value == "none"


def test_non_ascii_digits_are_not_indices():
    r = resolve_address("/channel/²/stage/layer/1/file/time")
    assert r == ResolvedAddress()
    r = resolve_address("/channel/1/stage/layer/٣/file/time")
    assert r.channel == 1
    assert r.layer is None
    assert not r.is_actionable
