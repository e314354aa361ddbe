"""Mind Map Platform Core Modules"""

from .exceptions import (
    MindMapError, ValidationError, Unauthorized, NotFound, NoCredential,
    UpstreamError, DecryptionError, StoreError, DuplicateEdgeError,
    MaterializationError
)
from .credential_vault import CredentialVault
from .response_normalizer import ResponseNormalizer
from .layout_engine import LayoutEngine, compute_positions

__all__ = [
    'MindMapError', 'ValidationError', 'Unauthorized', 'NotFound', 'NoCredential',
    'UpstreamError', 'DecryptionError', 'StoreError', 'DuplicateEdgeError',
    'MaterializationError',
    'CredentialVault', 'ResponseNormalizer', 'LayoutEngine', 'compute_positions'
]
