"""Shared constants for rdsconnect."""

FILE_MODE = 0o600
DIR_MODE = 0o700

DEFAULT_REGIONS = ["us-east-1", "us-east-2"]
DEFAULT_ENGINES = ["aurora", "mysql"]
DEFAULT_DB_PORT = 3306
DEFAULT_CLUSTER = "shared"

TOKEN_LIFETIME_MINUTES = 15
SAFETY_MARGIN_MINUTES = 1
RETRY_BACKOFF_SECONDS = 60.0
REGION_TIMEOUT_SECONDS = 30.0
CLASSIFIER_TIMEOUT_SECONDS = 5

API_CONNECT_TIMEOUT = 5
API_READ_TIMEOUT = 10
API_MAX_RETRIES = 3
USER_AGENT_EXTRA = "rdsconnect"

IDENTITY_ENV_VAR = "AWS_PROFILE"
CONFIG_ENV_VAR = "RDSCONNECT_CONFIG"
DB_USERNAME_ENV_VAR = "RDSCONNECT_DB_USERNAME"
DEFAULT_CONFIG_FILE = "~/.rdsconnect.yml"
DEFAULT_STATE_DIR = "~/.rdsconnect"
DEFAULT_CREDENTIAL_FILE = "~/.my.cnf"

CACHE_FILE_PREFIX = "rds-cache-"
DAEMON_LOCK_FILE = "renewal-daemon.pid"
DAEMON_STATUS_FILE = "renewal-daemon.json"
DAEMON_LOG_FILE = "renewal-daemon.log"
DAEMON_STOP_GRACE_SECONDS = 5.0

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SELECTOR_NOT_FOUND = 3
EXIT_AUTHORIZATION_EXPIRED = 4
EXIT_CACHE_UNAVAILABLE = 5
EXIT_IDENTITY_MISSING = 6
EXIT_CORRUPT_CREDENTIAL_FILE = 7
EXIT_INTERRUPTED = 130
