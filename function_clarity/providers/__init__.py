from .abstract import (
    CodeDownloader,
    FunctionClient,
    FunctionDescription,
    Notifier,
    QueueReader,
    RegistryClient,
    SignatureStore,
)
from .factory import Providers, create_providers

__all__ = [
    "CodeDownloader",
    "FunctionClient",
    "FunctionDescription",
    "Notifier",
    "QueueReader",
    "RegistryClient",
    "SignatureStore",
    "Providers",
    "create_providers",
]
