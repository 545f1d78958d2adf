"""
Configuration module for the LAN scanner.
Provides YAML configuration loading, validation and scan presets.
"""

from .config_loader import ConfigLoader, ScannerSettings, ScanPreset, preset_enabled_map

__all__ = ['ConfigLoader', 'ScannerSettings', 'ScanPreset', 'preset_enabled_map']
