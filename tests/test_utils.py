import csv
import io

import pandas as pd
import pytest

from epc_api.utils.cache import TTLCache
from epc_api.utils.features import normalize_postcode
from epc_api.utils.format import frame_to_csv, neutralize_csv_field


# =========================
# TTL cache
# =========================
def test_cache_hit_until_expiry():
    now = [0.0]
    cache = TTLCache(clock=lambda: now[0])
    cache.set("k", {"v": 1}, ttl_sec=5)
    assert cache.get("k") == {"v": 1}
    now[0] = 4.9
    assert cache.get("k") == {"v": 1}
    now[0] = 5.0
    assert cache.get("k") is None


def test_cache_miss_and_clear():
    cache = TTLCache()
    assert cache.get("missing") is None
    cache.set("k", 1, ttl_sec=60)
    cache.clear()
    assert cache.get("k") is None


# =========================
# Postcodes
# =========================
@pytest.mark.parametrize(
    "raw,expected",
    [(" sw1a 1aa ", "SW1A 1AA"), ("m1", "M1"), ("", None), ("   ", None), (None, None)],
)
def test_normalize_postcode(raw, expected):
    assert normalize_postcode(raw) == expected


# =========================
# CSV
# =========================
@pytest.mark.parametrize(
    "value,expected",
    [
        ("=SUM(A1:A2)", "'=SUM(A1:A2)"),
        ("+44", "'+44"),
        ("-1", "'-1"),
        ("@cmd", "'@cmd"),
        ("SW1A 1AA", "SW1A 1AA"),
        ("", ""),
        (None, None),
        (42, 42),
    ],
)
def test_neutralize_csv_field(value, expected):
    assert neutralize_csv_field(value) == expected


def test_frame_to_csv_orders_columns_and_blanks_nulls():
    df = pd.DataFrame(
        [
            {"postcode": "SW1A 1AA", "lmk_key": "K1", "main_fuel": None},
            {"postcode": "M1 1AE", "lmk_key": "K2", "main_fuel": "oil, heating"},
        ]
    )
    out = frame_to_csv(df, ["lmk_key", "postcode", "current_energy_rating", "main_fuel"])
    lines = out.splitlines()
    assert lines[0] == "lmk_key,postcode,current_energy_rating,main_fuel"
    assert lines[1] == "K1,SW1A 1AA,,"
    assert lines[2] == 'K2,M1 1AE,,"oil, heating"'
    assert out.endswith("\n")


def test_frame_to_csv_neutralizes_formulas():
    df = pd.DataFrame([{"lmk_key": "=HYPERLINK(\"http://x\")", "postcode": "SW1A"}])
    rows = list(csv.DictReader(io.StringIO(frame_to_csv(df, ["lmk_key", "postcode"]))))
    assert rows[0]["lmk_key"] == "'=HYPERLINK(\"http://x\")"


def test_frame_to_csv_empty_frame_is_header_only():
    df = pd.DataFrame(columns=["lmk_key", "postcode"])
    assert frame_to_csv(df, ["lmk_key", "postcode"]) == "lmk_key,postcode\n"
