"""
Warning Listeners

Channel for advisory messages raised while treating outliers.
"""

from typing import List
from abc import ABC, abstractmethod
import threading
import warnings

from .exceptions import OutlierWarning


class WarningListener(ABC):
    """Receives advisory messages."""

    @abstractmethod
    def warning(self, message: str) -> None:
        pass


class WarningCollector(WarningListener):
    """
    Collects warnings in insertion order, dropping duplicates.
    """

    def __init__(self):
        self._messages: List[str] = []
        self._lock = threading.Lock()

    def warning(self, message: str) -> None:
        with self._lock:
            if message not in self._messages:
                self._messages.append(message)

    @property
    def messages(self) -> List[str]:
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()


class PythonWarningsListener(WarningListener):
    """Forwards messages to warnings.warn as OutlierWarning."""

    def __init__(self, stacklevel: int = 3):
        self.stacklevel = stacklevel

    def warning(self, message: str) -> None:
        warnings.warn(message, OutlierWarning, stacklevel=self.stacklevel)
