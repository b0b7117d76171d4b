"""
Configuration module for the autograde pipeline.

Loads environment variables from .env, validates required settings,
creates necessary directories, and exposes a Config object that the
composition root (:mod:`autograde.app`) hands to every component.
"""

import os
import sys
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Config:
    """Central configuration loaded from environment variables."""

    def __init__(self, env_path: Optional[str] = None, create_dirs: bool = True):
        """
        Initialize configuration from .env file.

        Args:
            env_path: Optional explicit path to .env file.
                      Defaults to .env in the current working directory.
            create_dirs: Create the storage and log directories if missing.
        """
        self.project_root: Path = Path.cwd()
        env_file = Path(env_path) if env_path else self.project_root / ".env"

        if env_file.exists():
            load_dotenv(dotenv_path=str(env_file))
        else:
            alt = self.project_root / ".env.example"
            if alt.exists():
                load_dotenv(dotenv_path=str(alt))
                logging.warning(
                    ".env not found — loaded .env.example (API key will be invalid)"
                )

        # ── OpenAI ──
        self.OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
        self.OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
        self.OPENAI_VISION_MODEL: str = os.getenv("OPENAI_VISION_MODEL", "gpt-4o")
        self.OPENAI_CHAT_MODEL: str = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o")

        # ── Database ──
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL", f"sqlite:///{self.project_root / 'autograde.db'}"
        )

        # ── Blob storage ──
        self.STORAGE_ROOT: Path = Path(
            os.getenv("STORAGE_ROOT", str(self.project_root / "storage"))
        )
        self.STORAGE_BASE_URL: str = os.getenv("STORAGE_BASE_URL", "")

        # ── Extraction ──
        self.EXTRACTION_BATCH_SIZE: int = int(os.getenv("EXTRACTION_BATCH_SIZE", "10"))
        self.LARGE_DOCUMENT_BATCH_SIZE: int = int(
            os.getenv("LARGE_DOCUMENT_BATCH_SIZE", "5")
        )
        self.LARGE_DOCUMENT_PAGES: int = int(os.getenv("LARGE_DOCUMENT_PAGES", "40"))
        self.MAX_CONCURRENT_BATCHES: int = int(os.getenv("MAX_CONCURRENT_BATCHES", "1"))
        self.MAX_PAGES: int = int(os.getenv("MAX_PAGES", "50"))
        self.MAX_FILE_BYTES: int = int(os.getenv("MAX_FILE_BYTES", str(25 * 1024 * 1024)))
        self.WARN_FILE_BYTES: int = int(os.getenv("WARN_FILE_BYTES", str(5 * 1024 * 1024)))
        self.VISION_TIMEOUT_SECONDS: float = float(
            os.getenv("VISION_TIMEOUT_SECONDS", "120")
        )

        # ── Rasterization ──
        self.RASTER_QUALITY: float = float(os.getenv("RASTER_QUALITY", "0.95"))
        self.RASTER_GRAYSCALE: bool = (
            os.getenv("RASTER_GRAYSCALE", "true").lower() == "true"
        )
        self.RASTER_MAX_WIDTH: int = int(os.getenv("RASTER_MAX_WIDTH", "2000"))
        self.RASTER_FORMAT: str = os.getenv("RASTER_FORMAT", "png").lower()

        # ── Evaluation ──
        self.SINGLE_SHOT_THRESHOLD: int = int(os.getenv("SINGLE_SHOT_THRESHOLD", "5"))
        self.QUESTION_BATCH_SIZE: int = int(os.getenv("QUESTION_BATCH_SIZE", "8"))
        self.CHAT_TIMEOUT_SECONDS: float = float(
            os.getenv("CHAT_TIMEOUT_SECONDS", "300")
        )

        # ── Logging ──
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR: Path = Path(os.getenv("LOG_DIR", str(self.project_root / "logs")))

        if create_dirs:
            self.STORAGE_ROOT.mkdir(parents=True, exist_ok=True)
            self.LOG_DIR.mkdir(parents=True, exist_ok=True)

    def validate(self) -> bool:
        """
        Validate that all critical configuration is present.

        Returns:
            True if valid, False otherwise. Prints issues to stderr.
        """
        valid = True

        if not self.OPENAI_API_KEY:
            print(
                "⚠️  OPENAI_API_KEY is missing. Set it in .env.",
                file=sys.stderr,
            )
            valid = False

        for name in (
            "EXTRACTION_BATCH_SIZE",
            "LARGE_DOCUMENT_BATCH_SIZE",
            "MAX_CONCURRENT_BATCHES",
            "MAX_PAGES",
            "QUESTION_BATCH_SIZE",
        ):
            if getattr(self, name) < 1:
                print(f"⚠️  {name} must be >= 1.", file=sys.stderr)
                valid = False

        if not 0 < self.RASTER_QUALITY <= 1:
            print("⚠️  RASTER_QUALITY must be in (0, 1].", file=sys.stderr)
            valid = False

        return valid

    def print_summary(self) -> None:
        """Print startup configuration summary."""
        border = "═" * 56
        print(f"\n{border}")
        print("  Autograde — Configuration Summary")
        print(border)
        print(f"  Database           : {self.DATABASE_URL}")
        print(f"  Storage root       : {self.STORAGE_ROOT}")
        print(f"  Log directory      : {self.LOG_DIR}")
        print(f"  Log level          : {self.LOG_LEVEL}")
        print(f"  Vision model       : {self.OPENAI_VISION_MODEL}")
        print(f"  Chat model         : {self.OPENAI_CHAT_MODEL}")
        print(f"  Extraction batch   : {self.EXTRACTION_BATCH_SIZE} "
              f"({self.LARGE_DOCUMENT_BATCH_SIZE} above {self.LARGE_DOCUMENT_PAGES} pages)")
        print(f"  Concurrent batches : {self.MAX_CONCURRENT_BATCHES}")
        print(f"  Page cap           : {self.MAX_PAGES}")
        print(f"  Single-shot limit  : {self.SINGLE_SHOT_THRESHOLD} questions")
        print(f"  Question batch     : {self.QUESTION_BATCH_SIZE}")
        api_display = (
            self.OPENAI_API_KEY[:8] + "..." if self.OPENAI_API_KEY else "NOT SET"
        )
        print(f"  OpenAI API key     : {api_display}")
        print(f"{border}\n")


_config_instance: Optional[Config] = None


def get_config(env_path: Optional[str] = None) -> Config:
    """
    Return the process Config, creating it on first call.

    Only the composition root should call this; components receive the
    Config (or the values they need) through their constructors.

    Args:
        env_path: Optional path to .env file (used only on first call).

    Returns:
        Config instance.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(env_path=env_path)
    return _config_instance
