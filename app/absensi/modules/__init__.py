"""
Feature modules live under this package.

Each module owns its models, service functions and admin routes, and reuses
the platform primitives (auth, RBAC, org scope, audit, DB session).
"""
