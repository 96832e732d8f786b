"""Tests for the data model, configuration and state cells."""

from decimal import Decimal

import pytest

from autovoter.errors import PreconditionError
from autovoter.models import (
    ExecutionRecord,
    RefreshMode,
    StrategyConfig,
    StrategyKind,
    Target,
    TxStatus,
    committed_weight,
    to_percentage,
)
from autovoter.state import SnapshotStore, StrategyStore
from config import Config

from conftest import EPOCH_CLOSE, make_snapshot, scenario_targets


class TestPercentages:
    @pytest.mark.parametrize("value", ["100", "0.01", "33.33", 50, Decimal("12.5")])
    def test_valid(self, value):
        assert to_percentage(value) == Decimal(str(value))

    @pytest.mark.parametrize("value", ["0", "-1", "100.01", "12.345", "abc", "NaN"])
    def test_invalid(self, value):
        with pytest.raises(PreconditionError):
            to_percentage(value)

    def test_committed_weight_is_floored(self):
        config = StrategyConfig(percentage=Decimal("33.33"))
        assert config.percentage_bp == 3333
        assert committed_weight(10**18 + 1, config.percentage_bp) == (10**18 + 1) * 3333 // 10000


def test_strategy_coerces_strings():
    config = StrategyConfig(kind="diversified", refresh_mode="immediate", percentage="50")
    assert config.kind == StrategyKind.DIVERSIFIED
    assert config.refresh_mode == RefreshMode.IMMEDIATE


def test_negative_weight_rejected():
    with pytest.raises(ValueError):
        Target(address="0x1", name="bad", weight=-1)


def test_execution_record_dict_round_trip():
    record = ExecutionRecord(10, "Test-Vote", "0x1", ["A"], 1.5, TxStatus.PENDING)
    assert ExecutionRecord.from_dict(record.to_dict()) == record


class TestStateCells:
    def test_publish_bumps_version_and_replaces_whole_snapshot(self):
        store = SnapshotStore()
        old = store.current()
        version = store.publish(make_snapshot(scenario_targets()))
        assert version == 1
        assert store.current().version == 1
        assert old.targets == ()
        assert store.has_targets()

    def test_set_epoch_close_keeps_targets(self):
        store = SnapshotStore()
        store.publish(make_snapshot(scenario_targets(), epoch_close=None))
        store.set_epoch_close(EPOCH_CLOSE)
        assert store.epoch_close == EPOCH_CLOSE
        assert len(store.current().targets) == 3

    def test_strategy_update_validates(self):
        strategies = StrategyStore(StrategyConfig())
        with pytest.raises(PreconditionError):
            strategies.update(diversification_count=0)
        assert strategies.update(enabled=True).enabled
        assert strategies.version == 1


class TestConfig:
    def test_validate_reports_problems(self, monkeypatch):
        monkeypatch.setattr(Config, "RPC_URL", "")
        monkeypatch.setattr(Config, "TOKEN_IDS", [])
        monkeypatch.setattr(Config, "VOTE_PERCENTAGE", "abc")
        monkeypatch.setattr(Config, "VOTE_STRATEGY", "yolo")
        errors = Config.validate()
        assert any("RPC_URL" in e for e in errors)
        assert any("TOKEN_IDS" in e for e in errors)
        assert any("VOTE_PERCENTAGE" in e for e in errors)
        assert any("VOTE_STRATEGY" in e for e in errors)

    def test_strategy_from_environment(self, monkeypatch):
        monkeypatch.setattr(Config, "VOTE_STRATEGY", "single")
        monkeypatch.setattr(Config, "VOTE_PERCENTAGE", "25")
        monkeypatch.setattr(Config, "SCAN_MODE", "immediate")
        config = Config.strategy()
        assert config.kind == StrategyKind.SINGLE
        assert config.percentage == Decimal("25")
        assert config.refresh_mode == RefreshMode.IMMEDIATE
