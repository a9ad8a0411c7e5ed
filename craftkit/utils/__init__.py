"""
Shared helpers: platform detection, maven coordinates, formatting and resilience.
"""
