"""
Runtime settings for bomsync.

Settings resolve in priority order:
1) explicit constructor arguments
2) environment variables (BOMSYNC_*), optionally loaded from a .env file
3) built-in defaults
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

DEFAULT_HEADER_SCAN_LIMIT = 30
DEFAULT_FIXED_WIDTH_MIN_CONFIDENCE = 0.45
DEFAULT_SIGNATURE_SLICE = 512
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class SyncSettings:
    """Tunable limits for detection, caching and logging."""
    header_scan_limit: int = DEFAULT_HEADER_SCAN_LIMIT
    fixed_width_min_confidence: float = DEFAULT_FIXED_WIDTH_MIN_CONFIDENCE
    signature_slice: int = DEFAULT_SIGNATURE_SLICE
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        if self.header_scan_limit < 1:
            raise ValueError(f"header_scan_limit must be >= 1, got {self.header_scan_limit}")
        if not 0.0 <= self.fixed_width_min_confidence <= 1.0:
            raise ValueError(
                f"fixed_width_min_confidence must be within [0, 1], got {self.fixed_width_min_confidence}"
            )
        if self.signature_slice < 1:
            raise ValueError(f"signature_slice must be >= 1, got {self.signature_slice}")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        header_scan_limit: Optional[int] = None,
        fixed_width_min_confidence: Optional[float] = None,
        signature_slice: Optional[int] = None,
        log_level: Optional[str] = None
    ) -> "SyncSettings":
        """
        Build settings from arguments, falling back to environment variables.

        Args:
            env_file: Optional .env file to load before reading the environment
                      (existing environment variables are not overridden)
            header_scan_limit: Rows scanned when locating the header
                               (defaults to BOMSYNC_HEADER_SCAN_LIMIT or 30)
            fixed_width_min_confidence: Confidence needed to trust fixed-width
                               detection (defaults to BOMSYNC_FIXED_WIDTH_MIN_CONFIDENCE or 0.45)
            signature_slice: Characters taken from head and tail of a source
                             for its signature (defaults to BOMSYNC_SIGNATURE_SLICE or 512)
            log_level: Logging level name (defaults to BOMSYNC_LOG_LEVEL or WARNING)

        Returns:
            SyncSettings instance
        """
        if env_file is not None:
            load_dotenv(env_file)

        return cls(
            header_scan_limit=header_scan_limit or int(
                os.getenv("BOMSYNC_HEADER_SCAN_LIMIT", str(DEFAULT_HEADER_SCAN_LIMIT))
            ),
            fixed_width_min_confidence=fixed_width_min_confidence if fixed_width_min_confidence is not None else float(
                os.getenv("BOMSYNC_FIXED_WIDTH_MIN_CONFIDENCE", str(DEFAULT_FIXED_WIDTH_MIN_CONFIDENCE))
            ),
            signature_slice=signature_slice or int(
                os.getenv("BOMSYNC_SIGNATURE_SLICE", str(DEFAULT_SIGNATURE_SLICE))
            ),
            log_level=log_level or os.getenv("BOMSYNC_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )


def configure_logging(settings: Optional[SyncSettings] = None) -> None:
    """Apply the configured level to the bomsync logger hierarchy."""
    settings = settings or SyncSettings.from_env()
    logging.getLogger("bomsync").setLevel(settings.log_level)
