"""
Dossier Core — Fact extraction and knowledge base for code documentation

- Per-language extractors turning source text into FileInsight records
- Aggregation of insights into a read-only KnowledgeBase
- Ambient services: configuration, logging, caching, retries, collaborator
"""

from dossier_core.version import __version__

__all__ = [
    "__version__",
    # Facts
    "FileInsight",
    "TypeFact",
    "FunctionFact",
    "FieldFact",
    "VariantFact",
    "ParameterFact",
    "SymbolKind",
    "Visibility",
    "ParseStatus",
    # Extraction
    "extract_file",
    "get_extractor_registry",
    # Knowledge base
    "KnowledgeBase",
    "aggregate",
    # Errors
    "ExtractionError",
    "AggregationError",
    "UnitError",
    "CollaboratorError",
]


def __getattr__(name):
    """Lazy imports to keep extractor registration on first use."""
    if name in (
        "FileInsight", "TypeFact", "FunctionFact", "FieldFact", "VariantFact",
        "ParameterFact", "SymbolKind", "Visibility", "ParseStatus",
    ):
        from dossier_core import insight_types
        return getattr(insight_types, name)
    elif name in ("extract_file", "get_extractor_registry"):
        from dossier_core import extractor_base
        return getattr(extractor_base, name)
    elif name in ("KnowledgeBase", "aggregate"):
        from dossier_core import knowledge_base
        return getattr(knowledge_base, name)
    elif name in ("ExtractionError", "AggregationError", "UnitError", "CollaboratorError"):
        from dossier_core import errors
        return getattr(errors, name)
    raise AttributeError(f"module 'dossier_core' has no attribute '{name}'")
