"""
CellClaw Server - local HTTP API for approvals, conversations and policy.

Run with:
    cellclaw serve
    python -m cellclaw.server

Or programmatically:
    from cellclaw.server import CellClawServer
    CellClawServer().run()
"""

from .app import CellClawServer, create_app

__all__ = [
    "create_app",
    "CellClawServer",
]
