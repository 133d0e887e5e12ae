"""
pagetap/instrumentation/__init__.py

Declarative contract between the injected page script and the protocol handlers.
"""

from pagetap.instrumentation.contract import HOOK_POINTS, HookPoint, hook_point_for, is_known_phase, phase_role

__all__ = [
    "HOOK_POINTS",
    "HookPoint",
    "hook_point_for",
    "is_known_phase",
    "phase_role",
]
