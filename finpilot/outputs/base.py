# finpilot/outputs/base.py
from abc import ABC, abstractmethod

class BaseOutput(ABC):
    @abstractmethod
    def append(self, transactions):
        """Write enriched transactions to the chosen sink."""
        pass
