"""
Orchestration Package

Core of the tool call controller:
- Phase transition table and status projection
- Reconcile coordinator and dispatch routing
- Human approval gate and callback resolution
- Trace continuity across reconcile invocations

Submodules are imported directly; this package does not re-export them so
that the service layer can depend on the domain model without cycles.
"""
