"""
Composition Kernels — Stage 2 document sections

Sections, in document order:
1. section_overview
2. section_architecture
3. section_workflows
4. section_key_modules
5. section_boundaries
6. section_code_index (no collaborator)
"""

# Kernels are registered automatically by the registry
# via package discovery. No explicit imports needed here.

__all__ = []  # Auto-populated by registry
