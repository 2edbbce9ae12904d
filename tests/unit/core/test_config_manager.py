"""
Unit tests for ConfigManager.
"""

import pytest

from passport.core.config.manager import ConfigManager


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "gamification.yaml").write_text(
        "gamification:\n"
        "  xp_per_level: 500\n"
        "  serialization:\n"
        "    distributed_lock: false\n",
        encoding="utf-8",
    )
    (tmp_path / "overrides").mkdir()
    (tmp_path / "overrides" / "extra.yaml").write_text(
        "gamification:\n"
        "  serialization:\n"
        "    lock_wait_timeout_seconds: 2.5\n",
        encoding="utf-8",
    )
    (tmp_path / "broken.yaml").write_text("gamification: [unclosed\n", encoding="utf-8")
    ConfigManager.reset()
    ConfigManager.initialize(tmp_path)
    yield tmp_path
    ConfigManager.reset()


@pytest.mark.unit
class TestConfigManager:
    def test_reads_dot_notation(self, config_dir):
        assert ConfigManager.get("gamification.xp_per_level") == 500

    def test_yaml_files_deep_merged(self, config_dir):
        assert ConfigManager.get("gamification.serialization.distributed_lock") is False
        assert ConfigManager.get("gamification.serialization.lock_wait_timeout_seconds") == 2.5

    def test_unknown_key_returns_default(self, config_dir):
        assert ConfigManager.get("gamification.missing", 7) == 7
        assert ConfigManager.get("gamification.xp_per_level.deeper", "x") == "x"

    def test_override(self, config_dir):
        ConfigManager.set("gamification.xp_per_level", 250)
        ConfigManager.set("gamification.badges.default_visual_state", "shiny")

        assert ConfigManager.get("gamification.xp_per_level") == 250
        assert ConfigManager.get("gamification.badges.default_visual_state") == "shiny"

    def test_metrics_count_hits_and_misses(self, config_dir):
        ConfigManager.get("gamification.xp_per_level")
        ConfigManager.get("nope")

        metrics = ConfigManager.get_metrics()

        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["hit_rate"] == 50.0
