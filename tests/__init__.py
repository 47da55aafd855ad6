"""
TaskPilot test suite.
"""
