"""
Cross-repository operation coordinator.

Dependency-ordered branch and quality-gate operations across a workspace of
repositories, with change impact analysis and resilient, cached, rate-limited
remote calls.
"""

__version__ = "0.1.0"
