"""
Core modules for AI Quota Router.

This package contains the tier catalog, quota evaluation, query routing,
usage recording and request orchestration.
"""
