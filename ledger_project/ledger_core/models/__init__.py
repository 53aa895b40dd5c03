from .account import Account
from .auditlog import AuditLog
from .banking import BankTransaction
from .bill import Bill, BillLine, BillPayment
from .company import Company
from .customer import Customer
from .invoice import Invoice, InvoiceLine, InvoicePayment
from .journal import JournalEntry, JournalLine
from .vendor import Vendor
