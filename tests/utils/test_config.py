"""Tests for configuration loading."""

import pytest

from fedsync.utils.config import Config, ControllerConfig, get_config, reset_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "FEDSYNC_CLUSTER_AVAILABLE_DELAY_MS",
        "FEDSYNC_CLUSTER_UNAVAILABLE_DELAY_MS",
        "FEDSYNC_SKIP_ADOPTING_RESOURCES",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:
    """Test Config."""
    
    def test_defaults(self):
        config = Config()
        
        assert config.get("controller-duration.available-delay-ms") == 20000
        assert config.get("sync-controller.update-timeout-ms") == 30000
        assert config.get("sync-controller.skip-adopting-resources") is False
        assert config.get("missing.key", "fallback") == "fallback"
    
    def test_file_override(self, tmp_path):
        """Test an override file is merged over the defaults."""
        path = tmp_path / "override.yaml"
        path.write_text("sync-controller:\n  update-timeout-ms: 500\n")
        
        config = Config(str(path))
        
        assert config.get("sync-controller.update-timeout-ms") == 500
        assert config.get("sync-controller.small-delay-ms") == 3000
    
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FEDSYNC_CLUSTER_AVAILABLE_DELAY_MS", "1500")
        monkeypatch.setenv("FEDSYNC_SKIP_ADOPTING_RESOURCES", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        
        config = Config()
        
        assert config.get("controller-duration.available-delay-ms") == 1500
        assert config.get("sync-controller.skip-adopting-resources") is True
        assert config.get("logging.level") == "DEBUG"
    
    def test_set(self):
        config = Config()
        
        config.set("new.nested.key", 1)
        
        assert config.get("new.nested.key") == 1
    
    def test_global_instance(self):
        assert get_config() is get_config()


class TestControllerConfig:
    """Test ControllerConfig."""
    
    def test_cluster_delay_defaults(self):
        """Test the re-sweep waits longer after a cluster becomes unavailable."""
        controller_config = ControllerConfig.from_config(Config())
        
        assert controller_config.cluster_available_delay_ms == 20000
        assert controller_config.cluster_unavailable_delay_ms == 60000
    
    def test_from_config(self, monkeypatch):
        monkeypatch.setenv("FEDSYNC_CLUSTER_UNAVAILABLE_DELAY_MS", "7000")
        
        controller_config = ControllerConfig.from_config(Config())
        
        assert controller_config == ControllerConfig(cluster_unavailable_delay_ms=7000)
    
    def test_minimize_latency(self):
        config = ControllerConfig(skip_adopting_resources=True)
        
        fast = config.minimize_latency()
        
        assert fast.cluster_available_delay_ms == 1000
        assert fast.small_delay_ms == 20
        assert fast.skip_adopting_resources
        assert config.small_delay_ms == 3000
