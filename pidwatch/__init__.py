"""
Pidwatch - supervision of processes that publish their own pid file.

Launches commands, tracks them through pid and data marker files, checks
liveness, restarts crashed children and stops them with a bounded wait.
"""

__version__ = "0.1.0"
