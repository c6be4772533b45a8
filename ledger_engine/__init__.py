"""
Ledger Engine

Double-entry journal posting and fiscal period closing service.
"""

__version__ = "0.1.0"
