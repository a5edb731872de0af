"""
Version - Package version and the fact-schema version stamped on outputs
"""

__version__ = "0.4.0"

# Bumped whenever the shape of FileInsight or the persisted kernel output
# changes; cached insights and workspaces from another schema are not reused.
SCHEMA_VERSION = 2


def get_version_info() -> dict:
    """Version block written into run artifacts."""
    return {
        "version": __version__,
        "schema": SCHEMA_VERSION,
    }
