"""Tests for configuration management."""

from pathlib import Path

import hypothesis.strategies as st
import pytest
from hypothesis import given, settings

from treebackup import config as config_module
from treebackup.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HASH_ALGORITHM,
    BackupConfig,
    Configuration,
    ConfigurationError,
    LoggingConfig,
    ValidationError,
    create_default_config,
    format_config,
    parse_config,
    parse_config_string,
)


# Generate valid paths (non-empty, no null bytes)
valid_path_str = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "S"),
        blacklist_characters="\x00\n\r",
    ),
    min_size=1,
    max_size=50,
).filter(lambda s: s.strip() and not s.startswith("-"))


@st.composite
def backup_configs(draw):
    """Generate valid BackupConfig instances."""
    return BackupConfig(
        hash_algorithm=draw(st.sampled_from(["md5", "sha1", "sha256", "blake2b"])),
        chunk_size=draw(st.integers(min_value=1, max_value=1024 * 1024)),
        use_hard_links=draw(st.booleans()),
        use_staging=draw(st.booleans()),
        preserve_metadata=draw(st.booleans()),
    )


@st.composite
def logging_configs(draw):
    """Generate valid LoggingConfig instances."""
    return LoggingConfig(
        level=draw(st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR"])),
        log_file=Path("/tmp") / draw(valid_path_str),
        error_log_file=Path("/tmp") / draw(valid_path_str),
        log_max_size_mb=draw(st.integers(min_value=1, max_value=100)),
        log_backup_count=draw(st.integers(min_value=0, max_value=20)),
        console=draw(st.booleans()),
    )


@st.composite
def configurations(draw):
    """Generate valid Configuration instances."""
    return Configuration(
        source_directory=draw(st.one_of(st.none(), valid_path_str.map(lambda s: Path("/tmp/src") / s))),
        backup_root=draw(st.one_of(st.none(), valid_path_str.map(lambda s: Path("/tmp/bk") / s))),
        backup=draw(backup_configs()),
        logging=draw(logging_configs()),
    )


class TestConfigurationRoundTrip:
    """
    For any valid Configuration object, formatting it to TOML and then
    parsing the result produces an equivalent Configuration object.
    """

    @given(config=configurations())
    @settings(max_examples=50)
    def test_round_trip_preserves_configuration(self, config: Configuration):
        parsed = parse_config_string(format_config(config))

        assert parsed == config


class TestParseConfigString:

    def test_empty_document_gives_defaults(self):
        config = parse_config_string("")

        assert config.source_directory is None
        assert config.backup_root is None
        assert config.backup.hash_algorithm == DEFAULT_HASH_ALGORITHM == "md5"
        assert config.backup.chunk_size == DEFAULT_CHUNK_SIZE == 16384
        assert config.backup.use_hard_links
        assert config.logging.level == "INFO"
        assert not config.logging.console

    def test_default_template_parses(self):
        config = parse_config_string(create_default_config())

        assert config.source_directory is None
        assert config.backup == BackupConfig()

    def test_main_paths_are_expanded(self):
        config = parse_config_string('[main]\nsource_directory = "~/data"\nbackup_root = "/bk"\n')

        assert config.source_directory == Path.home() / "data"
        assert config.backup_root == Path("/bk")

    def test_hash_algorithm_is_lowercased(self):
        config = parse_config_string('[backup]\nhash_algorithm = "SHA256"\n')

        assert config.backup.hash_algorithm == "sha256"

    def test_unknown_hash_algorithm(self):
        with pytest.raises(ValidationError, match="hash_algorithm"):
            parse_config_string('[backup]\nhash_algorithm = "crc7"\n')

    @pytest.mark.parametrize("name", ["shake_128", "shake_256"])
    def test_variable_length_hash_algorithm(self, name):
        with pytest.raises(ValidationError, match="hash_algorithm"):
            parse_config_string(f'[backup]\nhash_algorithm = "{name}"\n')

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_non_positive_chunk_size(self, value):
        with pytest.raises(ValidationError, match="chunk_size"):
            parse_config_string(f"[backup]\nchunk_size = {value}\n")

    def test_bool_is_not_an_int(self):
        with pytest.raises(ValidationError, match="expected int, got bool"):
            parse_config_string("[backup]\nchunk_size = true\n")

    @pytest.mark.parametrize("document, key", [
        ('[main]\nsource_directory = 5\n', "main.source_directory"),
        ('[backup]\nuse_hard_links = "yes"\n', "backup.use_hard_links"),
        ('[backup]\nuse_staging = 1\n', "backup.use_staging"),
        ('[logging]\nlevel = 10\n', "logging.level"),
        ('[logging]\nlog_max_size_mb = "10"\n', "logging.log_max_size_mb"),
        ('[logging]\nconsole = "no"\n', "logging.console"),
        ('main = "not a table"\n', "main"),
    ])
    def test_wrong_types(self, document, key):
        with pytest.raises(ValidationError, match=key.replace(".", r"\.")):
            parse_config_string(document)

    def test_invalid_toml(self):
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            parse_config_string("[main\n")

    def test_log_max_bytes(self):
        assert LoggingConfig(log_max_size_mb=2).log_max_bytes == 2 * 1024 * 1024


class TestParseConfig:

    def test_reads_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[main]\nbackup_root = "/bk"\n', encoding="utf-8")

        assert parse_config(path).backup_root == Path("/bk")

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            parse_config(tmp_path / "missing.toml")

    def test_missing_default_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.toml")

        assert parse_config() == Configuration()

    def test_existing_default_file_is_used(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('[backup]\nuse_hard_links = false\n', encoding="utf-8")
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", path)

        assert parse_config().backup.use_hard_links is False
