"""
Unit tests for configuration models and loading.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from stamper.config import (
    NamingRule, OutputSpec, RunConfig, StampStyle, load_config, normalize_hex_color
)
from stamper.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("STAMPER_PREFIX", "STAMPER_START_NUMBER", "STAMPER_DIGITS", "STAMPER_OUTPUT_FORMAT",
                 "STAMPER_ENCODE_QUALITY", "STAMPER_WORKERS", "STAMPER_LOG_LEVEL", "STAMPER_ENV"):
        monkeypatch.delenv(name, raising=False)


class TestModels:
    """Test model defaults and validation."""

    def test_reference_defaults(self):
        config = RunConfig()
        assert [(s.key, s.width, s.height) for s in config.output_specs] == [
            ("landscape", 1920, 1080), ("portrait", 500, 750)
        ]
        assert config.prefix == "EP "
        assert config.digits == 2
        assert config.extension == "jpg"

    def test_hex_colors_normalized(self):
        style = StampStyle(text_color="FFFFFF", background_color="#00AA00")
        assert style.text_color == "#ffffff"
        assert style.background_color == "#00aa00"

    def test_bad_hex_rejected(self):
        with pytest.raises(PydanticValidationError):
            StampStyle(text_color="#12345")

    def test_normalize_hex_color(self):
        assert normalize_hex_color(" abcdef ") == "#abcdef"

    @pytest.mark.parametrize("field,value", [
        ("digits", 0), ("digits", 7), ("start_number", -1), ("encode_quality", 0.05), ("workers", 0),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(PydanticValidationError):
            RunConfig(**{field: value})

    def test_font_size_range(self):
        with pytest.raises(PydanticValidationError):
            OutputSpec(key="k", width=10, height=10, font_size=401)

    def test_duplicate_spec_keys_rejected(self):
        spec = OutputSpec(key="k", width=10, height=10)
        with pytest.raises(PydanticValidationError):
            RunConfig(output_specs=[spec, spec])

    def test_at_least_one_spec(self):
        with pytest.raises(PydanticValidationError):
            RunConfig(output_specs=[])

    def test_frozen(self):
        config = RunConfig()
        with pytest.raises(PydanticValidationError):
            config.prefix = "X"

    def test_jpg_alias(self):
        assert RunConfig(output_format="JPG").output_format == "jpeg"
        assert RunConfig(output_format="png").extension == "png"

    def test_naming_rule_fallback(self):
        config = RunConfig(output_specs=[OutputSpec(key="square", width=10, height=10)], naming={})
        assert config.naming_rule("square") == NamingRule(filename_prefix="", tag="square")
        assert config.naming_rules() == {"square": NamingRule(filename_prefix="", tag="square")}

    def test_with_overrides(self):
        config = RunConfig().with_overrides(prefix="#", digits=3)
        assert (config.prefix, config.digits) == ("#", 3)

    def test_with_invalid_overrides(self):
        with pytest.raises(ConfigurationError):
            RunConfig().with_overrides(digits=9)

    def test_size_label(self):
        assert OutputSpec(key="k", width=500, height=750).size_label == "500x750"
        assert OutputSpec(key="k", width=500, height=750, label="Poster").size_label == "Poster"


class TestLoadConfig:
    """Test YAML and environment loading."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "missing.yaml"))
        assert config.run == RunConfig()

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "LOG_LEVEL: DEBUG\n"
            "LOG_FILE: null\n"
            "run:\n"
            "  prefix: '第'\n"
            "  digits: 3\n"
            "  output_specs:\n"
            "    - {key: square, width: 800, height: 800, font_size: 48}\n"
            "  naming:\n"
            "    square: {filename_prefix: 'S_', tag: '800'}\n",
            encoding='utf-8',
        )
        config = load_config(str(path))

        assert config.LOG_LEVEL == "DEBUG"
        assert config.LOG_FILE is None
        assert config.run.prefix == "第"
        assert config.run.digits == 3
        assert config.run.output_specs[0].key == "square"
        assert config.run.naming_rule("square").filename_prefix == "S_"

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STAMPER_PREFIX", "Ep.")
        monkeypatch.setenv("STAMPER_DIGITS", "4")
        monkeypatch.setenv("STAMPER_OUTPUT_FORMAT", "png")
        config = load_config(str(tmp_path / "missing.yaml"))

        assert config.run.prefix == "Ep."
        assert config.run.digits == 4
        assert config.run.output_format == "png"

    def test_invalid_values_raise_configuration_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("run:\n  digits: 12\n", encoding='utf-8')
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert exc_info.value.suggestions

    def test_malformed_yaml_treated_as_empty(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("run: [unclosed\n", encoding='utf-8')
        assert load_config(str(path)).run == RunConfig()
