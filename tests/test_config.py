from __future__ import annotations

import pytest

from parcel_tiles.config import CountyExclusions, Settings, get_settings, reset_settings_cache


def _reset_settings(monkeypatch, **env):
    for k, v in env.items():
        if v is None:
            monkeypatch.delenv(k, raising=False)
        else:
            monkeypatch.setenv(k, str(v))
    reset_settings_cache()


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults(monkeypatch):
    _reset_settings(
        monkeypatch,
        PT_DB_PATH=None,
        PT_EXCLUDED_COUNTIES=None,
        PT_ADJACENCY_BUFFER_M=None,
        PT_OWNERSHIP_MAX_ZOOM=None,
        PT_CACHE=None,
        PT_CACHE_TTL=None,
    )
    s = get_settings()
    assert s.db_path == "./data/parcels.sqlite"
    assert not s.exclusions
    assert s.adjacency_buffer_m == 10.0
    assert s.ownership_max_zoom == 14
    assert s.cache_enabled is True
    assert s.cache_ttl_seconds == 3600


def test_env_overrides(monkeypatch, tmp_path):
    _reset_settings(
        monkeypatch,
        PT_DB_PATH=tmp_path / "x.sqlite",
        PT_EXCLUDED_COUNTIES="harrison, Mills ,",
        PT_ADJACENCY_BUFFER_M="12.5",
        PT_MIN_CLUSTER_SIZE="3",
        PT_CACHE="off",
        PT_CACHE_TTL="60",
    )
    s = get_settings()
    assert s.db_path == str(tmp_path / "x.sqlite")
    assert s.exclusions.counties == frozenset({"HARRISON", "MILLS"})
    assert s.exclusions.is_excluded("harrison")
    assert s.adjacency_buffer_m == 12.5
    assert s.min_cluster_size == 3
    assert s.cache_enabled is False
    assert s.cache_ttl_seconds == 60


def test_bad_values_fall_back_to_defaults(monkeypatch):
    _reset_settings(monkeypatch, PT_ADJACENCY_BUFFER_M="wide", PT_CACHE="maybe", PT_MIN_CLUSTER_SIZE="0")
    s = get_settings()
    assert s.adjacency_buffer_m == 10.0
    assert s.cache_enabled is True
    assert s.min_cluster_size == 1


def test_settings_are_cached_until_reset(monkeypatch):
    _reset_settings(monkeypatch, PT_CACHE_TTL="10")
    assert get_settings().cache_ttl_seconds == 10
    monkeypatch.setenv("PT_CACHE_TTL", "20")
    assert get_settings().cache_ttl_seconds == 10
    reset_settings_cache()
    assert get_settings().cache_ttl_seconds == 20


def test_exclusions_ignore_blanks():
    ex = CountyExclusions.of(["", "  ", "Harrison"])
    assert ex.counties == frozenset({"HARRISON"})
    assert not ex.is_excluded(None)
    assert not Settings().exclusions
