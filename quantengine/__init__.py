import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

__version__ = "0.4.0"

# Load environment overrides early so settings pick them up on first access
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _detect_build_version() -> str:
    explicit = os.getenv("QUANT_ENGINE_VERSION")
    if explicit:
        return explicit
    build_file = Path(__file__).resolve().parents[1] / "_build_version.txt"
    if build_file.exists():
        try:
            return build_file.read_text(encoding="utf-8").strip()
        except OSError:
            pass
    return __version__


ENGINE_VERSION = _detect_build_version()

logger.debug("quantengine {} loaded", ENGINE_VERSION)
