"""
Configuration management for the episode stamper.
Loads run settings from YAML files with environment variable overrides
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, List, Literal, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from loguru import logger

from .errors import ConfigurationError


HEX_COLOR_RE = re.compile(r'^#?([0-9a-fA-F]{6})$')


def normalize_hex_color(value: str) -> str:
    """Return '#rrggbb' for 'rrggbb' or '#RRGGBB' input"""
    match = HEX_COLOR_RE.match(value.strip())
    if not match:
        raise ValueError(f"expected a #RRGGBB color, got {value!r}")
    return f"#{match.group(1).lower()}"


class OutputSpec(BaseModel):
    """One target rendition: canvas size plus label placement/typography"""
    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    font_size: int = Field(default=64, ge=8, le=400)
    offset_x: int = Field(default=30, ge=0)
    offset_y: int = Field(default=30, ge=0)
    label: str = ""

    @property
    def size_label(self) -> str:
        return self.label or f"{self.width}x{self.height}"


class NamingRule(BaseModel):
    """Export file name prefix/tag for one output spec"""
    model_config = ConfigDict(frozen=True)

    filename_prefix: str = ""
    tag: str = ""


class StampStyle(BaseModel):
    """Label appearance shared by every cell of a run"""
    model_config = ConfigDict(frozen=True)

    font_family: str = "Noto Sans JP, DejaVu Sans, Arial"
    bold: bool = True
    text_color: str = "#ffffff"
    use_background: bool = True
    background_color: str = "#000000"
    background_alpha: float = Field(default=0.55, ge=0.0, le=1.0)
    padding: int = Field(default=18, ge=0, le=200)
    use_shadow: bool = True
    shadow_alpha: float = Field(default=0.6, ge=0.0, le=1.0)

    @field_validator('text_color', 'background_color')
    @classmethod
    def _check_color(cls, value: str) -> str:
        return normalize_hex_color(value)


class ShadowParams(BaseModel):
    """Drop shadow geometry at the reference canvas extent"""
    model_config = ConfigDict(frozen=True)

    blur: float = Field(default=8.0, ge=0.0)
    offset: float = Field(default=2.0, ge=0.0)
    reference_extent: int = Field(default=1920, gt=0)

    def scaled_for(self, width: int, height: int) -> tuple:
        """Return (blur, offset) scaled to a canvas of the given size"""
        factor = max(width, height) / self.reference_extent
        blur = self.blur * factor
        offset = self.offset * factor
        if self.offset > 0:
            offset = max(1.0, offset)
        return blur, offset


def _default_output_specs() -> List[OutputSpec]:
    return [
        OutputSpec(key="landscape", width=1920, height=1080, font_size=64, offset_x=30, offset_y=30),
        OutputSpec(key="portrait", width=500, height=750, font_size=40, offset_x=20, offset_y=20),
    ]


def _default_naming() -> Dict[str, NamingRule]:
    return {
        "landscape": NamingRule(filename_prefix="L_", tag="1920x1080"),
        "portrait": NamingRule(filename_prefix="P_", tag="500x750"),
    }


class RunConfig(BaseModel):
    """Immutable snapshot of everything a stamping run depends on"""
    model_config = ConfigDict(frozen=True)

    # Sequencing / labels
    prefix: str = "EP "
    start_number: int = Field(default=1, ge=0)
    digits: int = Field(default=2, ge=1, le=6)

    # Renditions
    output_specs: List[OutputSpec] = Field(default_factory=_default_output_specs, min_length=1)
    naming: Dict[str, NamingRule] = Field(default_factory=_default_naming)
    style: StampStyle = Field(default_factory=StampStyle)
    shadow: ShadowParams = Field(default_factory=ShadowParams)
    text_height_factor: float = Field(default=1.1, gt=0.0)

    # Encoding
    output_format: Literal["jpeg", "png"] = "jpeg"
    encode_quality: float = Field(default=0.92, ge=0.1, le=1.0)

    # Execution
    workers: int = Field(default=1, ge=1, le=32)
    font_paths: List[str] = []

    @field_validator('output_format', mode='before')
    @classmethod
    def _normalize_format(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "jpg":
                return "jpeg"
        return value

    @model_validator(mode='after')
    def _check_specs(self):
        keys = [spec.key for spec in self.output_specs]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"duplicate output spec keys: {', '.join(duplicates)}")
        return self

    @property
    def extension(self) -> str:
        return "jpg" if self.output_format == "jpeg" else "png"

    def naming_rule(self, spec_key: str) -> NamingRule:
        """Naming rule for a spec key, falling back to the key as tag"""
        rule = self.naming.get(spec_key)
        if rule is None:
            return NamingRule(filename_prefix="", tag=spec_key)
        return rule

    def naming_rules(self) -> Dict[str, NamingRule]:
        return {spec.key: self.naming_rule(spec.key) for spec in self.output_specs}

    def with_overrides(self, **overrides) -> "RunConfig":
        """Validated copy with some fields replaced"""
        try:
            return RunConfig(**{**self.model_dump(), **overrides})
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid run settings",
                details={'errors': e.errors(), 'overrides': overrides},
            ) from e


class AppConfig(BaseModel):
    """Process-level settings (logging) plus the run configuration"""

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/stamper.log"
    run: RunConfig = Field(default_factory=RunConfig)


def load_yaml_config(file_path) -> Dict:
    """Load configuration from YAML file"""
    path = Path(file_path)
    if not path.exists():
        logger.debug(f"Config file not found: {file_path}")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading config file {file_path}: {e}")
        return {}


ENV_OVERRIDES = {
    'STAMPER_PREFIX': 'prefix',
    'STAMPER_START_NUMBER': 'start_number',
    'STAMPER_DIGITS': 'digits',
    'STAMPER_OUTPUT_FORMAT': 'output_format',
    'STAMPER_ENCODE_QUALITY': 'encode_quality',
    'STAMPER_WORKERS': 'workers',
}


def load_config(path: Optional[str] = None, environment: Optional[str] = None) -> AppConfig:
    """Load configuration with environment-specific overrides"""

    load_dotenv()
    environment = environment or os.getenv('STAMPER_ENV', 'development')

    # Explicit file wins over the default location
    base_config = load_yaml_config(path or "config/settings.yaml")
    env_config = {} if path else load_yaml_config(f"config/settings_{environment}.yaml")

    run_dict = {**(base_config.get('run') or {}), **(env_config.get('run') or {})}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None:
            run_dict[field_name] = value

    config_dict = {
        'LOG_LEVEL': os.getenv('STAMPER_LOG_LEVEL') or env_config.get('LOG_LEVEL') or base_config.get('LOG_LEVEL', 'INFO'),
        'LOG_FILE': env_config.get('LOG_FILE', base_config.get('LOG_FILE', 'logs/stamper.log')),
        'run': run_dict,
    }

    try:
        config = AppConfig(**config_dict)
    except PydanticValidationError as e:
        logger.error(f"Configuration validation error: {e}")
        raise ConfigurationError(
            "Invalid stamper configuration",
            details={'errors': e.errors(), 'environment': environment},
            suggestions=[
                "Check config/settings.yaml against the documented ranges",
                "Check STAMPER_* environment variables",
            ]
        ) from e

    logger.info(f"Loaded configuration ({environment}): {len(config.run.output_specs)} output specs, "
                f"format={config.run.output_format}")
    return config


# Global config instance
_config_instance = None

def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance
