"""
Cache package for the Entity Access service.

Provides the in-process LRU + TTL cache that memoizes grant/deny decisions
per (principal, policy, entity).
"""
