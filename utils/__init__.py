"""
DomainSentinel utilities: configuration and message formatting.
"""
