"""
Research Kernels — Stage 1 analyses over the Knowledge Base

- architecture: Domain grouping and inter-domain dependency sketch
- boundaries: HTTP routes and CLI commands with normalized records
- workflows: Bounded call chains from entry points
- key_modules: Domain ranking by public surface and inbound dependencies

Research kernels are pure: they read the Knowledge Base and upstream
artifacts and never call the collaborator.
"""

# Kernels are registered automatically by the registry
# via package discovery. No explicit imports needed here.

__all__ = []  # Auto-populated by registry
