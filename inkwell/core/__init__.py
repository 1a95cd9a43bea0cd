"""
Inkwell Core Module
Pipeline orchestration, context assembly, output parsing and state updates.
"""
