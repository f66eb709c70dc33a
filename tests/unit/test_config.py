"""Unit tests for engine configuration loading."""

import pytest

from taskweave.config import DEFAULT_STOP_WORDS, EngineConfig, load_config
from taskweave.errors import InvalidDocument


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    monkeypatch.delenv(EngineConfig.TASKS_ROOT_ENV, raising=False)
    monkeypatch.delenv(EngineConfig.ID_FORMAT_ENV, raising=False)


def _write_config(tmp_path, text):
    config_dir = tmp_path / ".tasks" / ".config"
    config_dir.mkdir(parents=True)
    (config_dir / "project.toml").write_text(text, encoding="utf-8")


class TestEngineConfig:
    """Test cases for EngineConfig."""

    def test_for_project(self, tmp_path):
        config = EngineConfig.for_project(tmp_path)

        assert config.tasks_root == tmp_path.resolve() / ".tasks"
        assert config.lock_path == config.tasks_root / ".lock"
        assert config.id_format == "concise"
        assert config.stop_words == DEFAULT_STOP_WORDS

    def test_invalid_id_format(self, tmp_path):
        with pytest.raises(ValueError):
            EngineConfig.for_project(tmp_path, id_format="uuid")

    def test_with_overrides_returns_new_value(self, tmp_path):
        config = EngineConfig.for_project(tmp_path)
        changed = config.with_overrides(use_file_lock=False)

        assert config.use_file_lock is True
        assert changed.use_file_lock is False

    def test_to_dict(self, tmp_path):
        data = EngineConfig.for_project(tmp_path).to_dict()

        assert data["tasks_root"].endswith(".tasks")
        assert "the" in data["stop_words"]


class TestLoadConfig:
    """Test cases for load_config."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path)

        assert config == EngineConfig.for_project(tmp_path)

    def test_reads_project_file(self, tmp_path):
        _write_config(
            tmp_path,
            'id_format = "timestamp"\n'
            'stop_words = ["Add", "fix"]\n'
            "max_context_length = 3\n"
            "use_file_lock = false\n",
        )

        config = load_config(tmp_path)

        assert config.id_format == "timestamp"
        assert config.stop_words == frozenset({"add", "fix"})
        assert config.max_context_length == 3
        assert config.use_file_lock is False

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        _write_config(tmp_path, 'id_format = "timestamp"\n')
        monkeypatch.setenv(EngineConfig.ID_FORMAT_ENV, "Concise")

        assert load_config(tmp_path).id_format == "concise"

    def test_tasks_root_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(EngineConfig.TASKS_ROOT_ENV, str(tmp_path / "elsewhere"))

        assert load_config(tmp_path).tasks_root == (tmp_path / "elsewhere").resolve()

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path, tmp_path / "missing.toml")

    def test_malformed_file(self, tmp_path):
        _write_config(tmp_path, "id_format = \n")

        with pytest.raises(InvalidDocument):
            load_config(tmp_path)
