# Overview: Explicit number generators for batches, orders and invoices.

"""
Document numbers are assigned by the service that creates the row, never by
an ORM hook. Columns carry unique constraints; the random suffix keeps two
numbers generated in the same millisecond apart.
"""

from __future__ import annotations

import secrets
import string
import time

_BATCH_ALPHABET = string.ascii_uppercase + string.digits


def _millis() -> int:
    return int(time.time() * 1000)


def new_batch_number() -> str:
    suffix = "".join(secrets.choice(_BATCH_ALPHABET) for _ in range(10))
    return f"BATCH-{_millis()}-{suffix}"


def new_order_number() -> str:
    return f"ORD-{_millis()}{secrets.randbelow(1000):03d}"


def new_invoice_number() -> str:
    return f"INV-{_millis()}{secrets.randbelow(1000):03d}"
