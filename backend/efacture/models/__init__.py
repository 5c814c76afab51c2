from .tenancy import Company
from .auth import User, SessionToken
from .security import SecurityEvent
from .invoices import Invoice, InvoiceLine, InvoiceStatusHistory
from .documents import InvoiceDocument

__all__ = [
    'Company',
    'User', 'SessionToken', 'SecurityEvent',
    'Invoice', 'InvoiceLine', 'InvoiceStatusHistory',
    'InvoiceDocument',
]
