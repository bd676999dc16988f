"""Configuration loading from environment variables and membank.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from membank.errors import MemoryBankError
from membank.markdown.core_files import HEADERS
from membank.store.repository import INDEX_FILENAME

_DEFAULT_ROOT = Path.home() / ".membank" / "memory-bank"
_CONFIG_FILENAME = "membank.toml"


@dataclass
class MembankConfig:
    """Top-level memory bank configuration."""

    root_dir: Path = _DEFAULT_ROOT
    language: str = "en"
    log_level: str = "INFO"
    index_filename: str = INDEX_FILENAME


def load_config(config_path: Path | None = None) -> MembankConfig:
    """Load configuration from environment variables and optional membank.toml.

    Priority: environment variables > membank.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.membank/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".membank" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    language = os.getenv("MEMBANK_LANGUAGE", file_data.get("language", "en"))
    if language not in HEADERS:
        raise MemoryBankError.invalid_argument("language", f"{language!r} (supported: {', '.join(HEADERS)})")

    return MembankConfig(
        root_dir=Path(os.getenv("MEMBANK_ROOT", file_data.get("root_dir", str(_DEFAULT_ROOT)))).expanduser(),
        language=language,
        log_level=os.getenv("MEMBANK_LOG_LEVEL", file_data.get("log_level", "INFO")),
        index_filename=file_data.get("index_filename", INDEX_FILENAME),
    )
