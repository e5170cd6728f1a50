"""Concrete setup steps in their default order."""

from pgsetup.steps import automated_explain, baseline, log_insights

DEFAULT_STEPS = (
    baseline.CHECK_PLATFORM,
    baseline.LOAD_CONFIG,
    baseline.SPECIFY_API_KEY,
    baseline.ESTABLISH_SUPERUSER_CONNECTION,
    baseline.CHECK_POSTGRES_VERSION,
    baseline.CHECK_REPLICATION_STATUS,
    baseline.SELECT_DATABASES,
    baseline.SPECIFY_MONITORING_USER,
    baseline.ENSURE_MONITORING_USER,
    baseline.SPECIFY_MONITORING_USER_PASSWORD,
    baseline.ENSURE_MONITORING_USER_PASSWORD,
    baseline.ENSURE_MONITORING_USER_PERMISSIONS,
    baseline.ENSURE_PGANALYZE_SCHEMA,
    baseline.CHECK_PGSS_AVAILABLE,
    baseline.ENSURE_PGSS_EXT_INSTALLED,
    baseline.ENSURE_PGSS_IN_SPL,
    baseline.CONFIRM_SET_UP_LOG_INSIGHTS,
    log_insights.ENSURE_SUPPORTED_LOG_ERROR_VERBOSITY,
    log_insights.ENSURE_SUPPORTED_LOG_DURATION,
    log_insights.ENSURE_SUPPORTED_LOG_STATEMENT,
    log_insights.ENSURE_SUPPORTED_LOG_MIN_DURATION_STATEMENT,
    log_insights.ENSURE_SUPPORTED_LOG_LINE_PREFIX,
    log_insights.SPECIFY_DB_LOG_LOCATION,
    log_insights.CONFIRM_SET_UP_AUTOMATED_EXPLAIN,
    automated_explain.CONFIRM_AUTOMATED_EXPLAIN_MODE,
    automated_explain.ENSURE_LOG_EXPLAIN_HELPERS,
    automated_explain.CHECK_AUTO_EXPLAIN_AVAILABLE,
    automated_explain.ENSURE_AUTO_EXPLAIN_IN_SPL,
    baseline.CONFIRM_RESTART_POSTGRES,
    automated_explain.ENSURE_RECOMMENDED_SETTINGS,
    baseline.CONFIRM_RUN_TEST_COMMAND,
    automated_explain.CONFIRM_EMIT_TEST_EXPLAIN,
    baseline.RELOAD_COLLECTOR,
)

__all__ = ["DEFAULT_STEPS"]
