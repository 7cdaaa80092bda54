from .interaction_watcher import InteractionWatcher

__all__ = ["InteractionWatcher"]
