STATE_DIR_NAME = ".taskboard"
CONFIG_FILE = "config.yaml"
STORE_FILE = "board.yaml"
STORE_LOCK_FILE = "board.lock"
ARTIFACTS_DIR = "artifacts"
EVENTS_FILE = "events.jsonl"

STORE_FORMAT_VERSION = 1
DEFAULT_LOCK_TIMEOUT = 30  # seconds
DEFAULT_SORT_DIRECTION = "ASC"
