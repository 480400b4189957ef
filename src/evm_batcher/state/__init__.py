"""
In-memory application state.
"""

from evm_batcher.state.app_state import AppState

__all__ = [
    "AppState",
]
