# archivist/constants.py
"""
Centralized magic constants organized by domain.

Values that are not environment-tunable live here with a short note on
what they control.
"""


class RetentionDefaults:
    """Retention engine defaults."""

    DELETED_BY = "retention_policy"       # deleted_by on soft-deleted records
    SYSTEM_ACTOR = "system"               # performed_by for automated actions
    RECENT_EXECUTIONS_LIMIT = 10          # Rows in the statistics report
    DAYS_PER_MONTH_ESTIMATE = 30          # Reporting estimate only
    DAYS_PER_YEAR_ESTIMATE = 365          # Reporting estimate only


class ArchiveDefaults:
    """Archive blob format constants."""

    ID_PREFIX = "ARC"
    ID_RANDOM_CHARS = 8                   # base36 chars after the timestamp
    COMPRESSION_LEVEL = 6                 # gzip level
    CHECKSUM_ALGORITHM = "sha256"
    ENCRYPTION_ALGORITHM = "fernet"
    RESTORE_TARGET = "original_collection"


class ChainDefaults:
    """Immutable audit chain file layout."""

    LOG_SUFFIX = "-immutable.log"
    STATE_SUFFIX = "-chain.json"
    GENESIS_HASH = ""                     # previousHash of entry 1
    RETENTION_CATEGORY = "compliance-events"
