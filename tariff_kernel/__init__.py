"""
Tariff Kernel - rating and carrier-invoice control core

Shared foundations for the tariff engines and services:
- Immutable domain records (rate terms, surcharges, pricing rules, invoices)
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clocks
- Persistence for rule usage counters and invoice status
"""

__version__ = "0.1.0"
