"""Decoding of GSM and UMTS radio metadata: channel coding, diagnostic records, SMS, RLC/MAC and sessions."""

__version__ = "0.1.0"