from .settings import DEDUP_STRATEGIES, Settings, settings

__all__ = ["DEDUP_STRATEGIES", "Settings", "settings"]
