from . import save_upcoming  # noqa: F401

__all__ = [
    "save_upcoming",
]
