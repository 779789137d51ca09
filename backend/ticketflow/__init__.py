"""
Ticketflow
==========

Ticket/epic tracking with a git branch workflow and agent session tracking.
"""

__version__ = "0.1.0"
