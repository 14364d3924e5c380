"""Change tracking between listing observations."""

from .change_detector import ChangeDetector, DetectionResult

__all__ = ["ChangeDetector", "DetectionResult"]
