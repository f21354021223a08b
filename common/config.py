import sys
import tempfile
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

_ROOT = Path(__file__).resolve().parent.parent


class EngineSettings(BaseSettings):
    python_path: str = sys.executable
    script_path: str = str(_ROOT / "engine" / "whisper_bridge.py")
    model_size: str = "large-v3"
    engine_variant: str = "--faster"
    scratch_dir: Path = Path(tempfile.gettempdir()) / "interview-transcriber"
    timeout_s: float = 120.0

    model_config = {"env_prefix": "WHISPER_"}


class ServiceSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8003
    context_size: int = 5
    prompt_context_entries: int = 3
    prompt_preamble: Optional[str] = None
    event_buffer: int = 100

    model_config = {"env_prefix": "TRANSCRIBER_"}


class CaptureSettings(BaseSettings):
    sample_rate: int = 16000
    channels: int = 1
    device: Optional[int] = None

    model_config = {"env_prefix": "CAPTURE_"}
