"""Project profile models and loader exports."""

from .loader import ProjectLoadError, ProjectLoader
from .models import ProjectProfile

__all__ = ["ProjectLoadError", "ProjectLoader", "ProjectProfile"]
