"""Tests for the windowed, versioned tile cache."""

import asyncio

import pytest

from conftest import GatedSource, make_fetch

from binmap_viewer.binarization import BinarizationSpec
from binmap_viewer.config import AppConfig
from binmap_viewer.raster_cache import CellState, WindowedRasterCache
from binmap_viewer.rasterizer import RasterResult
from binmap_viewer.sources import FeatureStore, SyntheticSampleSource, unit_ids


def _unit_data(n):
    return {f"u{i}": [(0, 0, i + 1), (1, 0, i + 2), (0, 1, i + 3)] for i in range(n)}


def _ids(n):
    return [f"u{i}" for i in range(n)]


class TestWindow:
    """Visible-window geometry owned by the cache."""

    def test_visible_rows_map_to_indices(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config, unit_ids=_ids(10))
        assert cache.columns == 3
        cache.set_visible_range(0, 1)
        assert cache.visible_indices() == [0, 1, 2, 3, 4, 5]

    def test_last_row_is_clamped(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config, unit_ids=_ids(10))
        cache.set_visible_range(3, 5)
        assert cache.visible_unit_ids() == ["u9"]

    def test_no_window_means_nothing_visible(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config, unit_ids=_ids(10))
        assert cache.visible_indices() == []
        assert cache.request_visible() == 0

    def test_columns_must_be_positive(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config)
        with pytest.raises(ValueError):
            cache.set_columns(0)
        cache.set_columns(5)
        assert cache.columns == 5

    def test_columns_limited_to_configured_options(self):
        config = AppConfig(column_options=(2, 4))
        cache = WindowedRasterCache(make_fetch({}), config=config)
        with pytest.raises(ValueError):
            cache.set_columns(3)
        with pytest.raises(ValueError):
            WindowedRasterCache(make_fetch({})).set_columns(7)
        cache.set_columns(4)
        assert cache.columns == 4

    def test_scroll_with_overscan(self):
        cache = WindowedRasterCache(make_fetch({}), unit_ids=_ids(100))
        cache.set_columns(4)
        assert cache.set_scroll(0, 600) == (0, 4)
        assert cache.set_scroll(3160, 600) == (8, 14)
        assert cache.visible_indices() == list(range(32, 60))
        assert cache.set_scroll(25 * 316, 600) == (23, 24)

    def test_scroll_on_empty_grid(self):
        cache = WindowedRasterCache(make_fetch({}))
        assert cache.set_scroll(0, 600) is None
        assert cache.visible_indices() == []


class TestRequests:
    """Job issuing, deduplication and commit."""

    @pytest.mark.asyncio
    async def test_pending_then_committed(self, small_config):
        source = GatedSource(_unit_data(10))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(10))
        cache.set_visible_range(0, 1)

        assert cache.request_visible() == 6
        assert cache.get("u0") is CellState.PENDING
        assert cache.get("u9") is CellState.ABSENT

        source.release()
        await cache.wait_idle()
        tile = cache.get("u0")
        assert isinstance(tile, RasterResult)
        assert tile.size == (32, 32)
        assert cache.stats().cached == 6
        assert cache.stats().pending == 0

    @pytest.mark.asyncio
    async def test_repeated_requests_are_deduplicated(self, small_config):
        source = GatedSource(_unit_data(10))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(10))
        cache.set_visible_range(0, 1)
        cache.request_visible()
        await asyncio.sleep(0)
        assert cache.request_visible() == 0
        assert cache.request_visible() == 0

        source.release()
        await cache.wait_idle()
        assert cache.request_visible() == 0
        assert all(count == 1 for count in source.calls.values())
        assert len(source.calls) == 6

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self, small_config):
        source = GatedSource(_unit_data(12))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(12))
        cache.set_visible_range(0, 3)
        assert cache.request_visible() == 12

        stats = cache.stats()
        assert stats.pending == 12
        assert stats.queued == 12 - small_config.max_inflight

        await asyncio.sleep(0)
        assert source.active == small_config.max_inflight
        source.release()
        await cache.wait_idle()
        assert source.max_active <= small_config.max_inflight
        assert cache.stats().cached == 12

    @pytest.mark.asyncio
    async def test_failed_tile_stays_absent_and_retries(self, small_config):
        source = SyntheticSampleSource(diameter=6, failing={"unit-2"})
        cache = WindowedRasterCache(source, config=small_config, unit_ids=unit_ids(3))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()

        assert cache.get("unit-2") is CellState.ABSENT
        assert isinstance(cache.get("unit-1"), RasterResult)
        assert cache.telemetry().failures == 1

        assert cache.request_visible() == 1
        await cache.wait_idle()
        assert source.calls["unit-2"] == 2
        assert source.calls["unit-1"] == 1

    @pytest.mark.asyncio
    async def test_fetch_timeout_fails_tile(self):
        config = AppConfig(output_size=(16, 16), fetch_timeout_s=0.01)
        source = SyntheticSampleSource(diameter=6, delay_s=1.0)
        cache = WindowedRasterCache(source, config=config, unit_ids=unit_ids(2))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()
        assert cache.get("unit-1") is CellState.ABSENT
        assert cache.telemetry().failures == 2

    @pytest.mark.asyncio
    async def test_features_are_persisted(self, small_config):
        store = FeatureStore()
        cache = WindowedRasterCache(
            make_fetch(_unit_data(3)), config=small_config, unit_ids=_ids(3), feature_store=store
        )
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()
        assert store.status() == (3, ["u0", "u1", "u2"])
        assert store.get_cached_features("u1").shape == (3, 3)

    @pytest.mark.asyncio
    async def test_binarized_mode_uses_separate_keys(self, small_config):
        seen = []

        def fake_rasterize(sample_set, output_size, padding, spec, lut):
            seen.append((sample_set.unit_id, spec))
            return RasterResult(b"png", tuple(output_size))

        cache = WindowedRasterCache(
            make_fetch(_unit_data(3)),
            config=small_config,
            unit_ids=_ids(3),
            rasterize_fn=fake_rasterize,
        )
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()

        spec = BinarizationSpec(frozenset({1, 2}))
        cache.set_binarization(spec)
        assert cache.get("u0", spec) is CellState.ABSENT
        assert cache.request_visible() == 3
        await cache.wait_idle()

        assert isinstance(cache.get("u0"), RasterResult)
        assert isinstance(cache.get("u0", spec), RasterResult)
        assert ("u0", spec) in seen
        assert ("u0", None) in seen

    def test_empty_binarization_is_raw_mode(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config)
        cache.set_binarization(BinarizationSpec(frozenset()))
        assert cache.binarization is None

    def test_request_outside_loop_leaves_cache_usable(self, small_config):
        cache = WindowedRasterCache(make_fetch(_unit_data(3)), config=small_config, unit_ids=_ids(3))
        cache.set_visible_range(0, 0)
        with pytest.raises(RuntimeError):
            cache.request_visible()
        assert cache.get("u0") is CellState.ABSENT
        stats = cache.stats()
        assert stats.pending == 0
        assert stats.queued == 0

        async def retry():
            issued = cache.request_visible()
            await asyncio.wait_for(cache.wait_idle(), timeout=1.0)
            return issued

        assert asyncio.run(retry()) == 3
        assert isinstance(cache.get("u0"), RasterResult)


class TestInvalidation:
    """Version bumps, stale drops, partitions and eviction."""

    @pytest.mark.asyncio
    async def test_results_from_old_version_are_dropped(self, small_config):
        source = GatedSource(_unit_data(3))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(3))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await asyncio.sleep(0)

        old = cache.version
        assert cache.bump_version() > old

        source.release()
        await cache.wait_idle()
        assert cache.get("u0") is CellState.ABSENT
        assert cache.stats().cached == 0
        assert cache.telemetry().stale_drops == 3

    @pytest.mark.asyncio
    async def test_rerequest_after_bump_commits_new_version(self, small_config):
        source = GatedSource(_unit_data(3))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(3))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await asyncio.sleep(0)

        cache.bump_version()
        assert cache.request_visible() == 3

        source.release()
        await cache.wait_idle()
        assert isinstance(cache.get("u0"), RasterResult)
        assert cache.telemetry().stale_drops == 3
        assert source.calls["u0"] == 2

    @pytest.mark.asyncio
    async def test_bump_drops_queued_jobs(self, small_config):
        source = GatedSource(_unit_data(6))
        cache = WindowedRasterCache(source.fetch_samples, config=small_config, unit_ids=_ids(6))
        cache.set_visible_range(0, 1)
        cache.request_visible()
        cache.bump_version()
        assert cache.stats().queued == 0

        source.release()
        await cache.wait_idle()
        assert len(source.calls) == small_config.max_inflight

    def test_explicit_version(self, small_config):
        cache = WindowedRasterCache(make_fetch({}), config=small_config, version=100)
        assert cache.version == 100
        assert cache.bump_version(500) == 500
        assert cache.bump_version() == 501

    @pytest.mark.asyncio
    async def test_clear_partition(self, small_config):
        cache = WindowedRasterCache(make_fetch(_unit_data(3)), config=small_config, unit_ids=_ids(3))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()

        spec = BinarizationSpec(frozenset({2}))
        cache.set_binarization(spec)
        cache.request_visible()
        await cache.wait_idle()
        assert len(cache.keys()) == 6

        assert cache.clear_partition("binary") == 3
        assert cache.get("u0", spec) is CellState.ABSENT
        assert isinstance(cache.get("u0"), RasterResult)
        assert cache.clear_partition("normal") == 3
        assert cache.keys() == []

        with pytest.raises(ValueError):
            cache.clear_partition("other")

    @pytest.mark.asyncio
    async def test_lru_cap_evicts_offscreen_tiles(self):
        config = AppConfig(output_size=(8, 8), max_cache_entries=3)
        cache = WindowedRasterCache(make_fetch(_unit_data(10)), config=config, unit_ids=_ids(10))
        cache.set_columns(1)
        cache.set_visible_range(0, 2)
        cache.request_visible()
        await cache.wait_idle()

        cache.set_visible_range(3, 5)
        cache.request_visible()
        await cache.wait_idle()

        assert sorted(key[0] for key in cache.keys()) == ["u3", "u4", "u5"]
        assert cache.telemetry().evictions == 3

    @pytest.mark.asyncio
    async def test_hit_ratio(self, small_config):
        cache = WindowedRasterCache(make_fetch(_unit_data(1)), config=small_config, unit_ids=_ids(1))
        cache.set_visible_range(0, 0)
        cache.request_visible()
        await cache.wait_idle()
        cache.get("u0")
        cache.get("missing")
        assert cache.telemetry().hit_ratio() == pytest.approx(0.5)
