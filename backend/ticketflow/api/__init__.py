"""
Ticketflow - API Package
========================

HTTP surface over the core.
"""
