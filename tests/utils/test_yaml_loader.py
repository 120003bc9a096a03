"""Tests for YAMLLoader."""

from pathlib import Path

import pytest

from regime_switch.config import RegimeSwitchConfig
from regime_switch.utils import YAMLLoader, YAMLLoadError


@pytest.fixture
def loader() -> YAMLLoader:
    return YAMLLoader()


class TestLoadFile:
    def test_valid_file(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.yml"
        path.write_text("symbol: ETHUSDT\nexecutor:\n  dry_run: true\n")

        config = loader.load_file(path, RegimeSwitchConfig)

        assert config.symbol == "ETHUSDT"
        assert config.executor.dry_run is True

    def test_empty_file_gives_defaults(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert loader.load_file(path, RegimeSwitchConfig) == RegimeSwitchConfig()

    def test_missing_file(self, loader: YAMLLoader, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            loader.load_file(tmp_path / "missing.yml", RegimeSwitchConfig)

    def test_syntax_error(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "broken.yml"
        path.write_text("symbol: [unclosed\n")

        with pytest.raises(YAMLLoadError) as exc_info:
            loader.load_file(path, RegimeSwitchConfig)

        assert exc_info.value.path == path
        assert exc_info.value.message.startswith("YAML syntax error")

    def test_top_level_must_be_mapping(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "list.yml"
        path.write_text("- one\n- two\n")

        with pytest.raises(YAMLLoadError, match="Expected a mapping"):
            loader.load_file(path, RegimeSwitchConfig)

    def test_unknown_key(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "typo.yml"
        path.write_text("regime:\n  confirmation_bar: 2\n")

        with pytest.raises(YAMLLoadError, match="regime.confirmation_bar"):
            loader.load_file(path, RegimeSwitchConfig)


class TestValidateYaml:
    def test_valid(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.yml"
        path.write_text("symbol: BTCUSDT\n")
        assert loader.validate_yaml(path, RegimeSwitchConfig) == []

    def test_missing(self, loader: YAMLLoader, tmp_path: Path) -> None:
        errors = loader.validate_yaml(tmp_path / "missing.yml", RegimeSwitchConfig)
        assert errors == [f"File not found: {tmp_path / 'missing.yml'}"]

    def test_reports_each_error(self, loader: YAMLLoader, tmp_path: Path) -> None:
        path = tmp_path / "bad.yml"
        path.write_text("executor:\n  retry_attempts: 0\n  step_timeout: -1\n")

        errors = loader.validate_yaml(path, RegimeSwitchConfig)

        assert len(errors) == 2
        assert any(error.startswith("executor.retry_attempts") for error in errors)
        assert any(error.startswith("executor.step_timeout") for error in errors)
