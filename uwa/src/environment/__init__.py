from .base import ActionRunner, PageReader
from .client import HostEnvironment

__all__ = ["ActionRunner", "HostEnvironment", "PageReader"]
