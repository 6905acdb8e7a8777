"""
LedgerBridge - QuickBooks Online sync, categorization and push-back backend.
"""

__version__ = "0.1.0"
