from unittest.mock import MagicMock

import pytest

from trailing_range.adapters.pool_adapter.adapter import PoolAdapter
from trailing_range.core.utils.tick_math import MAX_TICK


class _StubPoolAdapter(PoolAdapter):
    def __init__(self):
        super().__init__(chain_id=137)
        self.reader = MagicMock()

    def read_current_tick(self, pool_id):
        return self.reader.tick(pool_id)

    def read_tick_spacing(self, pool_id):
        return self.reader.spacing(pool_id)

    def apply_liquidity_delta(self, pool_id, lower_tick, upper_tick, liquidity_delta):
        return self.reader.modify(pool_id, lower_tick, upper_tick, liquidity_delta)


class TestPoolAdapter:
    @pytest.fixture
    def adapter(self):
        return _StubPoolAdapter()

    def test_adapter_type(self, adapter):
        assert adapter.adapter_type == "POOL"
        assert adapter.chain_id == 137

    def test_current_tick_success(self, adapter):
        adapter.reader.tick.return_value = -1234
        assert adapter.current_tick("pool") == (True, -1234)
        adapter.reader.tick.assert_called_once_with("pool")

    def test_current_tick_out_of_bounds(self, adapter):
        adapter.reader.tick.return_value = MAX_TICK + 1
        ok, err = adapter.current_tick("pool")
        assert ok is False
        assert "outside bounds" in err

    def test_tick_spacing_must_be_positive(self, adapter):
        adapter.reader.spacing.return_value = 0
        ok, _ = adapter.tick_spacing("pool")
        assert ok is False

    def test_modify_liquidity_returns_amounts(self, adapter):
        adapter.reader.modify.return_value = (10, 20)
        assert adapter.modify_liquidity("pool", -60, 60, 500) == (True, (10, 20))
        adapter.reader.modify.assert_called_once_with("pool", -60, 60, 500)

    def test_modify_liquidity_rejects_inverted_range(self, adapter):
        ok, err = adapter.modify_liquidity("pool", 60, -60, 500)
        assert ok is False
        assert "invalid range" in err
        adapter.reader.modify.assert_not_called()

    def test_modify_liquidity_failure(self, adapter):
        adapter.reader.modify.side_effect = RuntimeError("execution reverted")
        assert adapter.modify_liquidity("pool", -60, 60, -500) == (
            False,
            "execution reverted",
        )
