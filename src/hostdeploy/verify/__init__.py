from .probe import probe

__all__ = ["probe"]
