"""SnapKeep - durable backup and restore for embedded application databases."""

__version__ = "0.1.0"
__author__ = "SnapKeep Team"
