import os
from pathlib import Path

DEFAULT_DATA_DIR = Path(os.getenv("IMAGEGATE_DATA_DIR", ".imagegate")).absolute()

# Environment overrides (explicit CLI option > env var > default)
ENV_SCANNERS = "IMAGEGATE_SCANNERS"
ENV_CONCURRENCY = "IMAGEGATE_CONCURRENCY"
ENV_SCAN_TIMEOUT = "IMAGEGATE_SCAN_TIMEOUT"
ENV_RETRIES = "IMAGEGATE_RETRIES"
ENV_DATA_DIR = "IMAGEGATE_DATA_DIR"

# Build constants
BUILD_DEFAULT_TIMEOUT = 1800  # 30 minutes
BUILD_MAX_RETRIES = 1  # Only transient daemon errors are retried
DOCKER_PATH = "docker"

# Scanner constants
DEFAULT_SCANNERS = ["trivy"]
SCAN_DEFAULT_TIMEOUT = 300  # 5 minutes per scanner invocation
SCAN_CONCURRENCY = 3  # Max scanners running at once
SCAN_MAX_RETRIES = 2  # Retries for transient scanner errors
SCAN_CACHE_TTL = 0  # Seconds; 0 disables the scan report cache
SCAN_CACHE_CATEGORY = "scan_reports"
ERROR_OUTPUT_LIMIT = 1000  # Max characters of stderr kept in reports

# Backoff
RETRY_BASE_DELAY = 1.0  # Base delay in seconds for exponential backoff
RETRY_MAX_DELAY = 30.0
RETRY_JITTER_FACTOR = 0.1

# Publisher constants
PUSH_TIMEOUT = 900  # 15 minutes
SIGN_TIMEOUT = 120
COSIGN_PATH = "cosign"

# CLI exit codes
EXIT_OK = 0
EXIT_POLICY_FAIL = 1
EXIT_INFRA_ERROR = 2

# Reason messages for degraded scanners
REASON_SCANNER_TIMEOUT = "scanner timeout, fail-closed"
REASON_SCANNER_ERROR = "scanner error, fail-closed"
REASON_CANCELLED = "cancelled"
REASON_PUBLISH_INTERRUPTED = "publish interrupted, registry state unknown"
