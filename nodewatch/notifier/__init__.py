from .base import CompositeNotifier, Notifier
from .factory import build_notifier, build_notifier_from_env
from .types import AlertEvent

__all__ = ["AlertEvent", "CompositeNotifier", "Notifier", "build_notifier", "build_notifier_from_env"]
