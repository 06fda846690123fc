from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from shared.config.config_loader import expand_env, load_config
from shared.config.schema import EngineConfig


def test_repo_config_loads():
    cfg_path = Path(__file__).resolve().parents[1] / "config" / "config.yml"
    assert cfg_path.exists(), "示例配置缺失"

    cfg = load_config(str(cfg_path), load_env=False)
    assert isinstance(cfg, EngineConfig)
    assert cfg.symbol == "BTCUSDT"
    assert cfg.account.initial_balance == Decimal("10000")
    assert cfg.trading.default_leverage == Decimal("20")
    assert cfg.trading.maintenance_margin_rate == Decimal("0.005")
    assert cfg.history.record_all_closes is False


def test_load_config_expands_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        "symbol: ethusdt\n"
        "account:\n"
        "  id: ${SUB_ACCOUNT}\n"
        "state:\n"
        "  path: ${SUB_STATE_DIR}/engine.sqlite3\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SUB_ACCOUNT", "alice")
    monkeypatch.setenv("SUB_STATE_DIR", "/tmp/sub")

    cfg = load_config(str(cfg_path), load_env=False)
    assert cfg.symbol == "ETHUSDT"
    assert cfg.account.id == "alice"
    assert cfg.state.path == "/tmp/sub/engine.sqlite3"


def test_load_config_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SUB_DOTENV_ACCOUNT", raising=False)
    (tmp_path / ".env").write_text("SUB_DOTENV_ACCOUNT='bob'\n", encoding="utf-8")
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("account:\n  id: ${SUB_DOTENV_ACCOUNT}\n", encoding="utf-8")

    cfg = load_config(str(cfg_path))
    assert cfg.account.id == "bob"


def test_load_config_missing_env_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SUB_MISSING", raising=False)
    with pytest.raises(ValueError) as exc:
        expand_env({"a": ["${SUB_MISSING}"]})
    assert "Missing environment variable" in str(exc.value)


def test_unknown_key_rejected(tmp_path: Path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("trading:\n  default_levrage: 10\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(str(cfg_path), load_env=False)


def test_invalid_values_rejected(tmp_path: Path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("trading:\n  default_leverage: 0.5\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(str(cfg_path), load_env=False)


def test_non_mapping_root_and_missing_file(tmp_path: Path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="dict"):
        load_config(str(cfg_path), load_env=False)
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yml"))
