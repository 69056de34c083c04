"""Forensim - a forensic investigation training console.

Learners work through ordered investigation tasks by running shell-like
commands against a simulated filesystem, attaching and mounting evidence
devices, and submitting findings for score and badges.
"""

__version__ = "1.0.0"
