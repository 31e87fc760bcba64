"""Project-wide constants (block sizes, retry budgets, polling intervals)."""

KIB: int = 1 << 10
MIB: int = 1 << 20
GIB: int = 1 << 30

TREE_HASH_BLOCK_SIZE: int = 1 * MIB  # fixed by the storage service

# Upload
SINGLE_PART_THRESHOLD_BYTES: int = 4 * GIB
UPLOAD_PART_SIZE_BYTES: int = 2 * GIB
PART_UPLOAD_MAX_ATTEMPTS: int = 3
FREE_SPACE_MARGIN_BYTES: int = 100 * KIB

# Retrieval
RETRIEVAL_BLOCK_SIZE_BYTES: int = 2 * GIB
JOB_POLL_INTERVAL_SECONDS: float = 500
JOB_STATUS_MAX_FAILURES: int = 5
FETCH_MAX_ATTEMPTS: int = 5
FETCH_RETRY_DELAY_SECONDS: float = 120
ARCHIVE_MAX_ATTEMPTS: int = 5
ARCHIVE_RETRY_DELAY_SECONDS: float = 15
STREAM_PIECE_SIZE_BYTES: int = 1 * MIB

# Rate policy, in GiB per hour
MIN_RETRIEVAL_RATE_GIB: int = 2
MAX_RETRIEVAL_RATE_GIB: int = 8
RETRIEVAL_OVERHEAD_HOURS: int = 5  # ~4h job staging plus ~1h first download
POLICY_PROPAGATION_SECONDS: float = 500
POLICY_RETRY_DELAY_SECONDS: float = 60
POLICY_WARN_ITERATIONS: int = 10

# Ledger retention
MAX_AGE_DAYS: int = 120
MIN_MAX_AGE_DAYS: int = 5
STALE_AGE_GRACE_DAYS: int = 5

# Requests
REQUEST_SUFFIX: str = ".request"
REQUEST_TERMINATOR: str = "done"
REQUEST_ERROR_DIRNAME: str = "error"
# Deadlines earlier than this epoch cannot be genuine retrieval requests.
MIN_DEADLINE_EPOCH: int = 1433369966
REQUEST_IDLE_SECONDS: float = 60

# Upload pass
SKIPPED_SUFFIXES: tuple[str, ...] = (".txt", ".sh", ".log")
SKIPPED_PREFIXES: tuple[str, ...] = ("tmp.",)

RETRIEVAL_JOB_DESCRIPTION: str = "coldvault retrieval"
