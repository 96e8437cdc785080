"""Lifecycle Controller: quota at start, state transitions, bulk start/stop."""

from botfleet.lifecycle.controller import LifecycleController, TransitionReport

__all__ = ["LifecycleController", "TransitionReport"]
