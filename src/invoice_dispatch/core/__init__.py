"""Core invoicing components and abstractions."""

from invoice_dispatch.core.config import InvoicingConfig
from invoice_dispatch.core.exceptions import *  # noqa: F403
from invoice_dispatch.core.exceptions import __all__ as exceptions__all__
from invoice_dispatch.core.types import *  # noqa: F403
from invoice_dispatch.core.types import __all__ as types__all__

__all__ = ["InvoicingConfig"]

__all__ += exceptions__all__
__all__ += types__all__
