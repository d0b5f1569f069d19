"""Remote document store module.

Provides:
- DocumentStoreBase, the async document API used by repositories
- HttpDocumentStore for a Data-API style HTTP backend
- FakeDocumentStore for tests and offline development
"""

from glass.storage.client import (
    DocumentStoreBase,
    FakeDocumentStore,
    HttpDocumentStore,
    get_document_store,
)

__all__ = [
    "DocumentStoreBase",
    "HttpDocumentStore",
    "FakeDocumentStore",
    "get_document_store",
]
