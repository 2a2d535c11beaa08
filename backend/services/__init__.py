from .config import EngineSettings, load_settings
from .errors import ReelEngineError

__all__ = ["EngineSettings", "load_settings", "ReelEngineError"]
