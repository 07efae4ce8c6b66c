import os
from dataclasses import dataclass
try:
    # Ensure .env from project root is loaded even if CWD differs
    from dotenv import load_dotenv  # type: ignore
    _HAS_DOTENV = True
except Exception:
    _HAS_DOTENV = False

if _HAS_DOTENV:
    try:
        _BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        _DOTENV_PATH = os.path.join(_BASE_DIR, ".env")
        load_dotenv(_DOTENV_PATH)
    except Exception:
        # Non-fatal if dotenv isn't available or file missing
        pass


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    enable_request_id_logging: bool = _flag("ENABLE_REQUEST_ID_LOGGING", "true")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _flag("LOG_JSON", "false")
    # Vision inference gateway (OpenAI-compatible chat completions)
    ai_enable: bool = _flag("AI_ENABLE", "true")
    ai_gateway_url: str = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
    ai_api_key: str = os.getenv("AI_API_KEY", "")
    ai_model: str = os.getenv("AI_MODEL", "google/gemini-2.5-flash")
    ai_timeout_s: float = float(os.getenv("AI_TIMEOUT_S", "60"))
    # Raster mask processing
    raster_fetch_timeout_s: float = float(os.getenv("RASTER_FETCH_TIMEOUT_S", "15"))
    mask_min_component_px: int = int(os.getenv("MASK_MIN_COMPONENT_PX", "50"))
    mask_simplify_tolerance_px: float = float(os.getenv("MASK_SIMPLIFY_TOLERANCE_PX", "2.0"))
    # "trace" (border following) or "polar" (legacy angle sort)
    mask_contour_ordering: str = os.getenv("MASK_CONTOUR_ORDERING", "trace")
    # Persistence / training data
    analysis_dir: str = os.getenv("ANALYSIS_DIR", "./analyses")
    training_data_path: str = os.getenv("TRAINING_DATA_PATH", "")


def get_settings() -> Settings:
    return Settings()
