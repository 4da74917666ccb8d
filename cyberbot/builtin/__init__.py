"""Plugin units shipped with cyberbot."""

from pathlib import Path

BUILTIN_PLUGIN_DIR = Path(__file__).parent
