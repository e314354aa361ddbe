"""
Mind Map Platform - Error Types

Every failure raised by the vault, the store, the LLM client and the idea
pipeline derives from MindMapError so callers can catch the family at once.
"""

from __future__ import annotations

from typing import List, Optional, Any


class MindMapError(Exception):
    """Base class for platform errors"""


class ValidationError(MindMapError):
    """A required field is missing or malformed"""


class Unauthorized(MindMapError):
    """The acting user does not own (or may not read) the target entity"""


class NotFound(MindMapError):
    """Entity is absent or already soft-deleted"""


class NoCredential(MindMapError):
    """No usable API key could be resolved for the LLM call"""


class UpstreamError(MindMapError):
    """External LLM transport failure or non-success response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecryptionError(MindMapError):
    """Stored credential is corrupt or was sealed with another key"""


class StoreError(MindMapError):
    """Underlying persistence failure (the transaction has been rolled back)"""


class DuplicateEdgeError(StoreError):
    """An edge for this (source, target) pair already exists in the mind map"""


class MaterializationError(StoreError):
    """
    Idea materialization stopped part way.

    Rows created before the failure are kept unless the call was atomic,
    so `nodes_created` / `edges_created` tell the caller what to repair.
    """

    def __init__(
        self,
        message: str,
        nodes_created: int = 0,
        edges_created: int = 0,
        nodes: Optional[List[Any]] = None,
        edges: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.nodes_created = nodes_created
        self.edges_created = edges_created
        self.nodes = nodes or []
        self.edges = edges or []
