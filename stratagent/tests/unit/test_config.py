"""
Unit tests for the Config Loading Utility.

Tests validate:
- YAML loading and parsing
- Environment variable substitution and type coercion
- Execution and database config validation
- Error handling
- Global loader access
"""

import pytest
import os
import tempfile
from pathlib import Path

from stratagent.src.errors import ErrorKind
from stratagent.src.utils.config import (
    ConfigLoader,
    ConfigError,
    get_config_loader,
    load_config,
    reset_config_loader,
)


VALID_EXECUTION = """
coordinator:
  snapshot_timeout_seconds: 5
  dry_run:
    persist_results: false
agents:
  budget_fraction: 0.1
market_data:
  provider: http
  base_url: http://market.test
store:
  backend: memory
"""


def _write_execution(tmpdir, content):
    (Path(tmpdir) / "execution.yaml").write_text(content)
    return ConfigLoader(tmpdir)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def config_loader(temp_config_dir):
    """Create ConfigLoader with the shared temp config directory."""
    return ConfigLoader(temp_config_dir)


# =============================================================================
# ConfigLoader Tests
# =============================================================================

class TestConfigLoader:
    """Tests for ConfigLoader class."""

    def test_init_with_valid_dir(self, temp_config_dir):
        loader = ConfigLoader(temp_config_dir)
        assert loader.config_dir == temp_config_dir

    def test_init_with_invalid_dir(self):
        with pytest.raises(ConfigError, match="Config directory not found"):
            ConfigLoader("/nonexistent/path")

    def test_config_error_is_validation_kind(self):
        assert ConfigError("bad").kind == ErrorKind.VALIDATION

    def test_load_execution_config(self, config_loader):
        config = config_loader.get_execution_config()

        assert config['coordinator']['snapshot_timeout_seconds'] == 5
        assert config['coordinator']['dry_run']['persist_results'] is False
        assert config['market_data']['base_url'] == "http://market.test"
        assert config['paper_settlement']['simulated_slippage_pct'] == 0.5

    def test_get_database_config(self, config_loader):
        config = config_loader.get_database_config()

        assert config['connection']['host'] == 'localhost'
        assert config['connection']['port'] == 5432

    def test_load_nonexistent_config(self, config_loader):
        with pytest.raises(ConfigError, match="Config file not found"):
            config_loader.load('nonexistent')

    def test_config_caching(self, config_loader):
        config1 = config_loader.load('execution')
        config2 = config_loader.load('execution')
        assert config1 is config2

    def test_clear_cache(self, config_loader):
        config1 = config_loader.load('execution')
        config_loader.clear_cache()
        config2 = config_loader.load('execution')

        assert config1 is not config2
        assert config1 == config2

    def test_load_all(self, config_loader):
        configs = config_loader.load_all()
        assert set(configs) == {'execution', 'database'}

    def test_load_all_skips_invalid(self, temp_config_dir):
        (temp_config_dir / "broken.yaml").write_text("key: [1, 2")
        configs = ConfigLoader(temp_config_dir).load_all()

        assert 'broken' not in configs
        assert 'execution' in configs

    def test_empty_file_loads_as_empty_dict(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "empty.yaml").write_text("")
            assert ConfigLoader(tmpdir).load('empty') == {}


# =============================================================================
# Environment Variable Substitution Tests
# =============================================================================

class TestEnvVarSubstitution:
    """Tests for environment variable substitution."""

    def test_env_var_substitution(self, monkeypatch):
        """Test ${VAR} substitution."""
        monkeypatch.setenv('TEST_MARKET_URL', 'http://prices.example.com')
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, """
market_data:
  provider: http
  base_url: ${TEST_MARKET_URL}
""")
            config = loader.load('execution')

            assert config['market_data']['base_url'] == 'http://prices.example.com'

    def test_env_var_with_default(self):
        """Test ${VAR:-default} substitution."""
        assert 'NONEXISTENT_STORE_VAR' not in os.environ
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, """
market_data:
  provider: static
store:
  backend: ${NONEXISTENT_STORE_VAR:-postgres}
""")
            assert loader.load('execution')['store']['backend'] == 'postgres'

    def test_env_var_missing_without_default(self):
        """Test ${VAR} without default when var is missing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, """
market_data:
  provider: static
scheduler:
  cycle_interval_seconds: ${NONEXISTENT_INTERVAL_VAR}
""")
            config = loader.load('execution')

            # YAML parses an empty substitution as None
            assert config['scheduler']['cycle_interval_seconds'] is None

    def test_boolean_env_var_is_coerced(self, monkeypatch):
        monkeypatch.setenv('TEST_PERSIST', 'yes')
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, """
coordinator:
  dry_run:
    persist_results: "${TEST_PERSIST}"
market_data:
  provider: static
""")
            config = loader.load('execution')

            assert config['coordinator']['dry_run']['persist_results'] is True


# =============================================================================
# Type Coercion Tests
# =============================================================================

class TestTypeCoercion:
    """Tests for string-to-scalar coercion."""

    @pytest.fixture
    def loader(self, temp_config_dir):
        return ConfigLoader(temp_config_dir)

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("Off", False),
        ("42", 42),
        ("-7", -7),
        ("0.25", 0.25),
        ("09:00", "09:00"),
        ("sei-evm", "sei-evm"),
    ])
    def test_scalars(self, loader, raw, expected):
        assert loader._coerce_types(raw) == expected

    def test_non_finite_numbers_stay_strings(self, loader):
        assert loader._coerce_types("inf") == "inf"
        assert loader._coerce_types("NaN") == "NaN"
        assert loader._coerce_types("1e999") == "1e999"

    def test_nested_structures(self, loader):
        coerced = loader._coerce_types({"a": ["1", {"b": "false"}], "c": 3})
        assert coerced == {"a": [1, {"b": False}], "c": 3}


# =============================================================================
# Validation Tests
# =============================================================================

class TestConfigValidation:
    """Tests for config validation."""

    @pytest.mark.parametrize("content,message", [
        ("coordinator:\n  snapshot_timeout_seconds: 0\nmarket_data:\n  provider: static\n",
         "snapshot_timeout_seconds"),
        ("coordinator:\n  dry_run:\n    persist_results: sometimes\nmarket_data:\n  provider: static\n",
         "persist_results must be a boolean"),
        ("agents:\n  budget_fraction: 1.5\nmarket_data:\n  provider: static\n",
         "budget_fraction"),
        ("agents:\n  retry_policy:\n    max_retries: -1\nmarket_data:\n  provider: static\n",
         "max_retries"),
        ("market_data:\n  provider: websocket\n",
         "Unknown market_data.provider"),
        ("market_data:\n  provider: http\n",
         "base_url is required"),
        ("market_data:\n  provider: static\nscheduler:\n  max_concurrent_agents: 0\n",
         "max_concurrent_agents"),
        ("market_data:\n  provider: static\nstore:\n  backend: redis\n",
         "Unknown store.backend"),
        ("market_data:\n  provider: static\npaper_settlement:\n  simulated_slippage_pct: -0.5\n",
         "simulated_slippage_pct"),
    ])
    def test_invalid_execution_config(self, content, message):
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, content)
            with pytest.raises(ConfigError, match=message):
                loader.load('execution')

    def test_valid_execution_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, VALID_EXECUTION)
            assert loader.load('execution')['agents']['budget_fraction'] == 0.1

    def test_missing_database_field(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "database.yaml").write_text("""
database:
  connection:
    host: localhost
    port: 5432
    database: test
""")
            loader = ConfigLoader(tmpdir)
            with pytest.raises(ConfigError, match="Missing database connection field: user"):
                loader.load('database')

    def test_skip_validation(self):
        """Test loading without validation."""
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, "market_data:\n  provider: websocket\n")
            config = loader.load('execution', validate=False)
            assert config['market_data']['provider'] == 'websocket'


# =============================================================================
# Invalid YAML Tests
# =============================================================================

class TestInvalidYAML:
    """Tests for invalid YAML handling."""

    def test_invalid_yaml_syntax(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            loader = _write_execution(tmpdir, """
market_data:
  provider: [http, static
  # Missing closing bracket - invalid YAML
""")
            with pytest.raises(ConfigError, match="Invalid YAML"):
                loader.load('execution')


# =============================================================================
# Global Loader Tests
# =============================================================================

class TestGlobalConfigLoader:
    """Tests for the module-level loader."""

    @pytest.fixture(autouse=True)
    def reset_loader(self):
        reset_config_loader()
        yield
        reset_config_loader()

    def test_get_config_loader_is_singleton(self, temp_config_dir):
        loader = get_config_loader(temp_config_dir)
        assert get_config_loader() is loader
        assert get_config_loader("/ignored/after/first/call") is loader

    def test_reset_config_loader(self, temp_config_dir):
        loader = get_config_loader(temp_config_dir)
        reset_config_loader()
        assert get_config_loader(temp_config_dir) is not loader

    def test_load_config(self, temp_config_dir):
        get_config_loader(temp_config_dir)
        assert load_config('database')['database']['connection']['user'] == 'test_user'


# =============================================================================
# Real Config File Tests
# =============================================================================

class TestRealConfigFiles:
    """Tests that load from actual config files in the project."""

    @pytest.fixture
    def project_config_dir(self):
        """Get the path to the actual project config directory."""
        project_root = Path(__file__).parent.parent.parent.parent
        config_dir = project_root / "config"
        if config_dir.exists():
            return config_dir
        pytest.skip("Project config directory not found")

    def test_load_real_execution_config(self, project_config_dir):
        loader = ConfigLoader(project_config_dir)
        config = loader.load('execution', validate=False)

        for section in ('coordinator', 'agents', 'market_data', 'scheduler', 'store', 'paper_settlement'):
            assert section in config
        assert 'persist_results' in config['coordinator']['dry_run']
        assert config['paper_settlement']['gas_used'] == 21000

    def test_load_real_database_config(self, project_config_dir):
        loader = ConfigLoader(project_config_dir)
        # Skip validation since env vars might not be set
        raw_config = loader.load('database', validate=False)

        assert 'database' in raw_config
        assert 'connection' in raw_config['database']
        assert raw_config['database']['retry']['max_retries'] == 3
