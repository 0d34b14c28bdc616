"""
Entity access policies package.

- models: Conditions, rule groups, policies, results and cache keys.
- registry: Duplicate-safe policy registry.
- catalog: Built-in policies and the JSON policy file loader.
"""
