"""
Common utilities for the stream verification harness.
"""

from .run_context import InvalidStateTransition, RunContext, RunState

__all__ = ['InvalidStateTransition', 'RunContext', 'RunState']
