"""Storage for invoicing data.

- ``QueryGateway``: parameterized statements over an async SQLAlchemy engine
- ``InvoiceStore``: repository interface used by the send pipeline
- ``SQLInvoiceStore``: the store over the gateway

Example:
    ```python
    from invoice_dispatch.storage import QueryGateway, SQLInvoiceStore

    store = SQLInvoiceStore(QueryGateway("sqlite+aiosqlite:///./invoicing-app.db"))
    await store.initialize()
    invoice = await store.get_invoice(42)
    ```
"""

from invoice_dispatch.storage.gateway import MutationResult, QueryGateway
from invoice_dispatch.storage.invoice_store import InvoiceStore
from invoice_dispatch.storage.sql import SQLInvoiceStore

__all__ = [
    "InvoiceStore",
    "MutationResult",
    "QueryGateway",
    "SQLInvoiceStore",
]
