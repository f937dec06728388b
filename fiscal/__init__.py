"""
Fiscal Issuance Pipeline
========================
Signs, submits and tracks electronic tax documents through the OSE gateway,
and derives transport waybills from accepted invoices.
"""

__version__ = "0.4.0"
