"""
Configuration loader for the LAN scanner.
Handles loading and validation of the YAML probe configuration with fallback to defaults.
"""

import yaml
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.data_models import ProbeConfig, ProbeKind, ScanStrategy
from ..utils.logger import get_logger

DEFAULT_CONFIG_FILE = "probes.yml"

# Default tuning per probe; enabled flags give the out-of-the-box probe set
DEFAULT_PROBE_SETTINGS: Dict[ProbeKind, Dict[str, Any]] = {
    ProbeKind.ICMP: {"enabled": True, "timeout": 0.5, "max_concurrency": 200, "request_delay": 0.0},
    ProbeKind.TCP: {"enabled": True, "timeout": 0.8, "max_concurrency": 100, "request_delay": 0.0},
    ProbeKind.ARP: {"enabled": True, "timeout": 1.0, "max_concurrency": 80, "request_delay": 0.005},
    ProbeKind.MDNS: {"enabled": False, "timeout": 3.0, "max_concurrency": 30, "request_delay": 0.02},
    ProbeKind.UPNP: {"enabled": False, "timeout": 2.0, "max_concurrency": 50, "request_delay": 0.01},
    ProbeKind.DNS_REVERSE: {"enabled": True, "timeout": 1.0, "max_concurrency": 80, "request_delay": 0.005},
    ProbeKind.IPV6: {"enabled": False, "timeout": 2.0, "max_concurrency": 50, "request_delay": 0.01},
}


class ScanPreset(Enum):
    """Named probe selections."""
    QUICK = "quick"
    RECOMMENDED = "recommended"
    FULL = "full"
    SPEED = "speed"
    COMPREHENSIVE = "comprehensive"


_BASIC_PROBES = frozenset({ProbeKind.ICMP, ProbeKind.TCP, ProbeKind.ARP, ProbeKind.DNS_REVERSE})
_ADVANCED_PROBES = frozenset({ProbeKind.MDNS, ProbeKind.UPNP, ProbeKind.IPV6})

PRESET_PROBES: Dict[ScanPreset, frozenset] = {
    ScanPreset.QUICK: frozenset({ProbeKind.ICMP, ProbeKind.TCP}),
    ScanPreset.RECOMMENDED: frozenset(
        {ProbeKind.ICMP, ProbeKind.TCP, ProbeKind.ARP, ProbeKind.MDNS, ProbeKind.DNS_REVERSE}
    ),
    ScanPreset.FULL: frozenset(ProbeKind),
    ScanPreset.SPEED: frozenset({ProbeKind.ICMP, ProbeKind.TCP, ProbeKind.ARP}),
    ScanPreset.COMPREHENSIVE: _BASIC_PROBES | _ADVANCED_PROBES,
}


def preset_enabled_map(preset: ScanPreset) -> Dict[ProbeKind, bool]:
    """
    Expand a preset into an enabled flag for every probe kind.

    Args:
        preset: Preset to expand

    Returns:
        Mapping of every ProbeKind to its enabled flag
    """
    selected = PRESET_PROBES[preset]
    return {kind: kind in selected for kind in ProbeKind}


def default_probe_config(kind: ProbeKind) -> ProbeConfig:
    return ProbeConfig(**DEFAULT_PROBE_SETTINGS[kind])


def _default_probe_configs() -> Dict[ProbeKind, ProbeConfig]:
    return {kind: default_probe_config(kind) for kind in ProbeKind}


@dataclass
class ScannerSettings:
    """Engine-wide settings and the per-probe configurations."""
    probes: Dict[ProbeKind, ProbeConfig] = field(default_factory=_default_probe_configs)
    default_strategy: ScanStrategy = ScanStrategy.SMART
    breadth_first_workers: int = 8
    breadth_first_deadline: float = 2.0
    ultra_fast_concurrency: int = 200


class ConfigLoader:
    """
    Loads and validates the YAML probe configuration.
    Provides fallback to default values when the file or a field is invalid.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize ConfigLoader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the config directory relative to this file.
        """
        if config_dir is None:
            self.config_dir = Path(__file__).parent
        else:
            self.config_dir = Path(config_dir)

        self.logger = get_logger("ConfigLoader")

    def load(self, config_file: str = DEFAULT_CONFIG_FILE) -> ScannerSettings:
        """
        Load scanner settings from a YAML file.

        Args:
            config_file: Name of the configuration file

        Returns:
            ScannerSettings with loaded or default values
        """
        config_path = self.config_dir / config_file

        if not config_path.exists():
            self.logger.warning(f"Config file not found at {config_path}. Using default configuration.")
            return ScannerSettings()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing config file {config_path}: {e}")
            self.logger.warning("Using default configuration.")
            return ScannerSettings()
        except OSError as e:
            self.logger.error(f"Could not read config file {config_path}", exception=e)
            self.logger.warning("Using default configuration.")
            return ScannerSettings()

        if not isinstance(config_data, dict):
            self.logger.warning(f"Invalid config structure in {config_path}. Using default configuration.")
            return ScannerSettings()

        return self._parse_settings(config_data)

    def _parse_settings(self, config_data: Dict[str, Any]) -> ScannerSettings:
        defaults = ScannerSettings()
        scanner_data = config_data.get("scanner") or {}
        if not isinstance(scanner_data, dict):
            self.logger.warning("Invalid 'scanner' section. Using default engine settings.")
            scanner_data = {}

        breadth_first = scanner_data.get("breadth_first") or {}
        ultra_fast = scanner_data.get("ultra_fast") or {}

        probes = _default_probe_configs()
        probes_data = config_data.get("probes") or {}
        if not isinstance(probes_data, dict):
            self.logger.warning("Invalid 'probes' section. Using default probe configuration.")
            probes_data = {}

        for name, probe_data in probes_data.items():
            try:
                kind = ProbeKind(name)
            except ValueError:
                self.logger.warning(f"Unknown probe '{name}' in configuration. Skipping.")
                continue
            probes[kind] = self._load_probe(kind, probe_data)

        return ScannerSettings(
            probes=probes,
            default_strategy=self._validate_strategy(
                scanner_data.get("default_strategy", defaults.default_strategy.value)
            ),
            breadth_first_workers=self._validate_positive_int(
                breadth_first.get("workers", defaults.breadth_first_workers),
                "breadth_first.workers",
                defaults.breadth_first_workers,
            ),
            breadth_first_deadline=self._validate_positive_float(
                breadth_first.get("target_deadline", defaults.breadth_first_deadline),
                "breadth_first.target_deadline",
                defaults.breadth_first_deadline,
            ),
            ultra_fast_concurrency=self._validate_positive_int(
                ultra_fast.get("max_concurrency", defaults.ultra_fast_concurrency),
                "ultra_fast.max_concurrency",
                defaults.ultra_fast_concurrency,
            ),
        )

    def _load_probe(self, kind: ProbeKind, probe_data: Any) -> ProbeConfig:
        """
        Build one probe's configuration, validating every field.

        Args:
            kind: Probe the section belongs to
            probe_data: Parsed YAML section

        Returns:
            ProbeConfig with loaded or default values
        """
        default = DEFAULT_PROBE_SETTINGS[kind]
        if not isinstance(probe_data, dict):
            self.logger.warning(f"Invalid config for probe '{kind.value}'. Using defaults.")
            return default_probe_config(kind)

        prefix = kind.value
        params = probe_data.get("params") or {}
        if not isinstance(params, dict):
            self.logger.warning(f"Invalid {prefix}.params: {params}. Must be a mapping. Ignoring.")
            params = {}

        return ProbeConfig(
            enabled=self._validate_bool(probe_data.get("enabled", default["enabled"]),
                                        f"{prefix}.enabled", default["enabled"]),
            timeout=self._validate_positive_float(probe_data.get("timeout", default["timeout"]),
                                                  f"{prefix}.timeout", default["timeout"]),
            max_concurrency=self._validate_positive_int(probe_data.get("max_concurrency", default["max_concurrency"]),
                                                        f"{prefix}.max_concurrency", default["max_concurrency"]),
            request_delay=self._validate_non_negative_float(probe_data.get("request_delay", default["request_delay"]),
                                                            f"{prefix}.request_delay", default["request_delay"]),
            params=dict(params),
        )

    def _validate_positive_int(self, value: Any, field_name: str, default: int) -> int:
        """
        Validate that a value is a positive integer.

        Args:
            value: Value to validate
            field_name: Name of the field for error messages
            default: Default value to use if validation fails

        Returns:
            Validated integer value or default
        """
        if isinstance(value, bool):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be an integer. Using default: {default}")
            return default
        try:
            int_value = int(value)
        except (ValueError, TypeError):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be an integer. Using default: {default}")
            return default
        if int_value <= 0:
            self.logger.warning(f"Invalid {field_name}: {value}. Must be positive. Using default: {default}")
            return default
        return int_value

    def _validate_positive_float(self, value: Any, field_name: str, default: float) -> float:
        try:
            float_value = float(value)
        except (ValueError, TypeError):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be a number. Using default: {default}")
            return default
        if float_value <= 0:
            self.logger.warning(f"Invalid {field_name}: {value}. Must be positive. Using default: {default}")
            return default
        return float_value

    def _validate_non_negative_float(self, value: Any, field_name: str, default: float) -> float:
        try:
            float_value = float(value)
        except (ValueError, TypeError):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be a number. Using default: {default}")
            return default
        if float_value < 0:
            self.logger.warning(f"Invalid {field_name}: {value}. Must not be negative. Using default: {default}")
            return default
        return float_value

    def _validate_bool(self, value: Any, field_name: str, default: bool) -> bool:
        if not isinstance(value, bool):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be true or false. Using default: {default}")
            return default
        return value

    def _validate_strategy(self, value: Any) -> ScanStrategy:
        """
        Validate the default scan strategy.

        Args:
            value: Strategy name to validate

        Returns:
            Validated strategy or SMART
        """
        try:
            return ScanStrategy(value)
        except ValueError:
            valid = [strategy.value for strategy in ScanStrategy]
            self.logger.warning(f"Invalid default_strategy: {value}. Must be one of {valid}. Using default: smart")
            return ScanStrategy.SMART

    def create_default_config(self, config_file: str = DEFAULT_CONFIG_FILE) -> Path:
        """
        Write the default configuration file if it doesn't exist.

        Args:
            config_file: Name of the configuration file

        Returns:
            Path of the configuration file
        """
        config_path = self.config_dir / config_file
        if config_path.exists():
            return config_path

        defaults = ScannerSettings()
        default_config = {
            "scanner": {
                "default_strategy": defaults.default_strategy.value,
                "breadth_first": {
                    "workers": defaults.breadth_first_workers,
                    "target_deadline": defaults.breadth_first_deadline,
                },
                "ultra_fast": {"max_concurrency": defaults.ultra_fast_concurrency},
            },
            "probes": {kind.value: dict(settings) for kind, settings in DEFAULT_PROBE_SETTINGS.items()},
        }

        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(default_config, f, default_flow_style=False, indent=2, sort_keys=False)
        self.logger.info(f"Created default config at {config_path}")
        return config_path
