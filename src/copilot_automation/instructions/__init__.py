"""Standing instructions and event matching."""

from copilot_automation.instructions.matcher import InstructionEvent, InstructionMatcher
from copilot_automation.instructions.service import InstructionService, normalize_triggers

__all__ = [
    "InstructionEvent",
    "InstructionMatcher",
    "InstructionService",
    "normalize_triggers",
]
