"""Shared constants for pgsetup."""

DEFAULT_CONFIG_FILE = "/etc/pganalyze-collector.conf"
SETTINGS_FILE = ".pgsetup.yml"
DEFAULT_API_BASE_URL = "https://api.pganalyze.com"
REPORT_PATH = "/v2/setup/guided_setup"
REPORT_TIMEOUT_SECONDS = 3

COLLECTOR_EXECUTABLE = "pganalyze-collector"
COLLECTOR_SECTION = "pganalyze"
DEFAULT_SECTION = "DEFAULT"
HELPER_SCHEMA = "pganalyze"
DEFAULT_MONITORING_USER = "pganalyze"
DEFAULT_POSTGRES_PORT = 5432
DEFAULT_SUPERUSER = "postgres"

SOCKET_DIRS = ("/var/run/postgresql", "/tmp")
POSTGRES_OS_USER = "postgres"
USE_PG_CTL_ENV = "PGA_SETUP_USE_PG_CTL"
TEST_EXTRA_ARGS_ENV = "PGA_SETUP_COLLECTOR_TEST_EXTRA_ARGS"

MIN_PG_VERSION_NUM = 100000
SUPPORTED_PLATFORMS = {
    "ubuntu": "14.04",
    "debian": "10",
}

RECOMMENDED_LOG_LINE_PREFIX = "%m [%p] %q[user=%u,db=%d,app=%a] "
RECOMMENDED_GUCS = {
    "log_error_verbosity": "default",
    "log_duration": "off",
    "log_statement": "none",
    "log_min_duration_statement": 1000,
    "log_line_prefix": RECOMMENDED_LOG_LINE_PREFIX,
    "auto_explain.log_analyze": "on",
    "auto_explain.log_buffers": "on",
    "auto_explain.log_timing": "off",
    "auto_explain.log_triggers": "on",
    "auto_explain.log_verbose": "on",
    "auto_explain.log_format": "json",
    "auto_explain.log_min_duration": 1000,
    "auto_explain.log_nested_statements": "on",
}

RESTART_WAIT_RETRIES = 30
RESTART_WAIT_SECONDS = 2.0
CONFIG_FILE_MODE = 0o600
