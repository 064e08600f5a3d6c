"""
SQLite Storage Configuration

Constants for the SQLite storage subsystem. Tunables that operators may
change live in hivestore.config.StoreConfig.
"""

# Schema version
SCHEMA_VERSION = "1.1.0"

# Room for every cataloged statement plus the dynamically built updates
STATEMENT_CACHE_SIZE = 256

# Default result caps
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_LIST_LIMIT = 100
DEFAULT_RECENT_PROPOSALS = 10
DEFAULT_DECISIONS_LIMIT = 20
