"""
Session Module - Black Box Interface

Purpose: Mint session identifiers and track session activity
Interface: create_session(), get_session(), keep_alive(), end_session()
Hidden: Session storage, ID format

Replaceable with any session backend (database, distributed cache).
"""

from .session import SessionModule, generate_session_id

__all__ = ["SessionModule", "generate_session_id"]
