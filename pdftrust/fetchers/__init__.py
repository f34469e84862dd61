from .api import CrlClient, OcspClient
from .validation_clients import (
    RevocationDataWithContext,
    ValidationCrlClient,
    ValidationOcspClient,
)

__all__ = [
    'CrlClient',
    'OcspClient',
    'RevocationDataWithContext',
    'ValidationCrlClient',
    'ValidationOcspClient',
]
