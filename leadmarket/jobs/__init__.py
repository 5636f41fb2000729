"""
Background Jobs Module

Handles scheduled tasks for:
- Commission holdback release
- Weekly partner payouts
"""
