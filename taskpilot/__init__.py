"""
TaskPilot — Agentic Task Orchestration Engine

Turns a natural-language goal into a supervised, adaptive plan of
sub-tasks and drives it step by step against a reasoning service and a
tool executor:
- Decomposition: dependency-aware task breakdown with deterministic fallbacks
- Planning: adaptive scheduling, contingencies and bounded re-planning
- Execution: a think/plan/act/reflect state machine with cooperative control
"""

__version__ = "0.1.0"
