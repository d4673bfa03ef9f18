"""
Trigger intake: the HTTP endpoint that turns requests into build triggers.
"""

from .listener import TriggerListener, create_trigger_app

__all__ = ["TriggerListener", "create_trigger_app"]
