"""
Conference cleanup core: timeouts, stale sweeps, metrics and the scheduler facade.
"""
