"""
tests/test_cache.py – OfflineCache read-through and mirror durability.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from kopi.core.cache import STORAGE_KEYS
from kopi.errors import RemoteUnavailable
from kopi.models import Material, Order
from conftest import make_material, make_order


class TestReadThrough:
    @pytest.mark.asyncio
    async def test_fresh_data_overwrites_mirror(self, cache):
        await cache.save("kopi_materials", [make_material(id="old")])
        loader = AsyncMock(return_value=[make_material(id="new")])
        result = await cache.read_through("kopi_materials", Material, loader)
        assert result.degraded is False
        assert [m.id for m in result.records] == ["new"]
        assert [m.id for m in await cache.load("kopi_materials", Material)] == ["new"]

    @pytest.mark.asyncio
    async def test_failure_serves_mirror(self, cache):
        await cache.save("kopi_materials", [make_material()])
        loader = AsyncMock(side_effect=RemoteUnavailable("timeout"))
        result = await cache.read_through("kopi_materials", Material, loader)
        assert result.degraded is True
        assert result.error == "timeout"
        assert [m.id for m in result.records] == ["mat-1"]

    @pytest.mark.asyncio
    async def test_failure_without_mirror_is_empty(self, cache):
        loader = AsyncMock(side_effect=RemoteUnavailable("timeout"))
        result = await cache.read_through("kopi_orders", Order, loader)
        assert result.records == []
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_empty_result_leaves_mirror_alone(self, cache):
        await cache.save("kopi_materials", [make_material()])
        result = await cache.read_through("kopi_materials", Material, AsyncMock(return_value=[]))
        assert result.records == []
        assert result.degraded is False
        assert len(await cache.load("kopi_materials", Material)) == 1

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, cache):
        with pytest.raises(RuntimeError):
            await cache.read_through("kopi_materials", Material, AsyncMock(side_effect=RuntimeError("bug")))


class TestMirror:
    def test_storage_keys(self):
        assert STORAGE_KEYS == {
            "materials": "kopi_materials",
            "menu_items": "kopi_menu_items",
            "orders": "kopi_orders",
            "kds_tickets": "kopi_kds_tickets",
        }

    @pytest.mark.asyncio
    async def test_datetimes_round_trip_to_milliseconds(self, cache):
        when = datetime(2024, 6, 30, 23, 59, 59, 987000, tzinfo=timezone.utc)
        await cache.save("kopi_orders", [make_order(date=when, created_at=when)])
        loaded = (await cache.load("kopi_orders", Order))[0]
        assert loaded.date == when
        assert loaded.date.tzinfo is not None
        assert loaded.kds_tickets[0].status == "new"

    @pytest.mark.asyncio
    async def test_corrupt_mirror_reads_empty(self, cache):
        path = cache.path_for("kopi_materials")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")
        assert await cache.load("kopi_materials", Material) == []

    @pytest.mark.asyncio
    async def test_write_leaves_no_temp_file(self, cache):
        await cache.save("kopi_materials", [make_material()])
        names = sorted(p.name for p in cache.path_for("kopi_materials").parent.iterdir())
        assert names == ["kopi_materials.json"]

    @pytest.mark.asyncio
    async def test_unwritable_dir_returns_false(self, tmp_path):
        from kopi.core.cache import OfflineCache
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert await OfflineCache(blocker / "cache").save("kopi_materials", [make_material()]) is False
