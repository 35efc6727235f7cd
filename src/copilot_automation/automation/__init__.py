"""Automation cycle orchestration."""

from copilot_automation.automation.cycle import AutomationCycle, AutomationCycleResult
from copilot_automation.automation.runtime import AutomationRuntime, build_runtime

__all__ = ["AutomationCycle", "AutomationCycleResult", "AutomationRuntime", "build_runtime"]
