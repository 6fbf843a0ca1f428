"""
Subscription Store Modules
==========================

Flask blueprint modules built on the core store.
"""

__all__ = ['subscribers']
