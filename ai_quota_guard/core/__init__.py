"""
Core modules for AI Quota Guard.

This package contains plan limits, pricing, quota decisions, usage
reporting and the usage tracker.
"""
