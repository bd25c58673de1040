"""
Unit tests for the miniSEED header codec.
"""

from datetime import datetime, timedelta, timezone

import pytest

from slink2dali.errors import ParseError
from slink2dali.models import RecordType
from slink2dali.mseed import (
    classify,
    detect_byte_order,
    parse_header,
    rewrite_network,
    sample_rate,
    source_name,
)

START = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_parse_header_fields(make_record):
    """Codes are trimmed and the start time comes from BTIME."""
    hdr = parse_header(make_record(network="IU", station="KONO", location="", channel="BHE"))

    assert (hdr.network, hdr.station, hdr.location, hdr.channel) == ("IU", "KONO", "", "BHE")
    assert hdr.start == START
    assert hdr.sample_count == 400
    assert hdr.sample_rate == 20.0
    assert hdr.blockettes == (1000,)
    assert hdr.record_length == 512
    assert str(hdr.stream) == "IU_KONO__BHE/MSEED"


def test_end_time_covers_all_samples(make_record):
    """400 samples at 20 Hz span exactly 20 seconds."""
    hdr = parse_header(make_record(nsamples=400, factor=20, multiplier=1))
    assert hdr.end - hdr.start == timedelta(seconds=20)
    assert hdr.span.end_hptime - hdr.span.start_hptime == 20_000_000


def test_end_equals_start_without_samples(make_record):
    hdr = parse_header(make_record(nsamples=0, factor=0, multiplier=0))
    assert hdr.end == hdr.start


def test_fractional_start_time(make_record):
    start = START.replace(microsecond=123400)
    hdr = parse_header(make_record(start=start))
    assert hdr.start == start


def test_little_endian_record(make_record):
    raw = make_record(byte_order="<")
    assert detect_byte_order(raw) == "<"
    hdr = parse_header(raw)
    assert hdr.start == START
    assert hdr.sample_rate == 20.0


def test_blockette_100_overrides_nominal_rate(make_record):
    raw = make_record(blockettes=(100, 1000), b100_rate=40.0, factor=20)
    hdr = parse_header(raw)
    assert hdr.sample_rate == 40.0
    assert hdr.blockettes == (100, 1000)


@pytest.mark.parametrize("rate", [float("nan"), float("inf"), 1e-30])
def test_unusable_blockette_100_rate_rejected(make_record, rate):
    raw = make_record(station="ODD", blockettes=(100, 1000), b100_rate=rate)
    with pytest.raises(ParseError) as exc:
        parse_header(raw)
    assert exc.value.stream_name == "XX_ODD_00_BHZ"


def test_time_correction_applied_unless_flagged(make_record):
    """Correction is in 0.0001 s units and skipped when activity bit 0x02 is set."""
    corrected = parse_header(make_record(time_correction=5000))
    assert corrected.start == START + timedelta(seconds=0.5)

    already = parse_header(make_record(time_correction=5000, act_flags=0x02))
    assert already.start == START


@pytest.mark.parametrize(
    "factor,multiplier,expected",
    [
        (20, 1, 20.0),
        (1, -10, 0.1),
        (-10, 1, 0.1),
        (-10, -2, 0.05),
        (0, 1, 0.0),
    ],
)
def test_sample_rate_rules(factor, multiplier, expected):
    assert sample_rate(factor, multiplier) == pytest.approx(expected)


def test_invalid_quality_indicator(make_record):
    with pytest.raises(ParseError) as exc:
        parse_header(make_record(network="GE", station="WLF", quality=b"X"))
    assert exc.value.stream_name == "GE_WLF_00_BHZ"
    assert "quality" in exc.value.diagnostic


def test_short_record_rejected():
    with pytest.raises(ParseError):
        parse_header(b"000001D XX")


def test_garbage_start_time_rejected(make_record):
    raw = bytearray(make_record())
    raw[20:24] = b"\xff\xff\xff\xff"
    with pytest.raises(ParseError, match="byte order"):
        parse_header(bytes(raw))


def test_blockette_loop_rejected(make_record):
    raw = bytearray(make_record())
    raw[50:52] = (48).to_bytes(2, "big")  # B1000 points back at itself
    with pytest.raises(ParseError, match="blockette"):
        parse_header(bytes(raw))


def test_classify_by_blockette_family(make_record):
    assert classify(parse_header(make_record())) is RecordType.DATA
    assert classify(parse_header(make_record(blockettes=(200, 1000)))) is RecordType.DETECTION
    assert classify(parse_header(make_record(blockettes=(300, 1000)))) is RecordType.CALIBRATION
    assert classify(parse_header(make_record(blockettes=(500, 1000)))) is RecordType.TIMING
    assert classify(parse_header(make_record(factor=0, multiplier=0))) is RecordType.MESSAGE
    assert classify(parse_header(make_record(nsamples=0))) is RecordType.GENERAL


def test_rewrite_network_pads_and_copies(make_record):
    raw = make_record(network="XX")

    rewritten = rewrite_network(raw, "IU")
    assert rewritten[18:20] == b"IU"
    assert raw[18:20] == b"XX"  # original untouched

    single = rewrite_network(raw, "G")
    assert single[18:20] == b"G "
    assert len(single) == len(raw)
    assert source_name(single) == "G_ANMO_00_BHZ"
