"""Library Desk - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Borrow/return state machine (ledger.py)
- Book inventory (inventory.py)
- Accounts and sessions (identity.py, sessions.py)
- Role gating (policy.py)
- CLI interface (main.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
