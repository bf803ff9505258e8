import os
from dataclasses import dataclass, field

DEV_ENV_NAMES = {'development', 'dev', 'local', 'test'}


def _env(name, default=''):
    return (os.getenv(name, default) or default).strip()


@dataclass(frozen=True)
class AppConfig:
    """Central config object read from the environment at load time."""

    flask_secret_key: str = field(default_factory=lambda: os.getenv('FLASK_SECRET_KEY', ''))
    log_level: str = field(default_factory=lambda: _env('LOG_LEVEL', 'INFO').upper())
    sentry_dsn_backend: str = field(default_factory=lambda: _env('SENTRY_DSN_BACKEND'))
    sentry_environment: str = field(default_factory=lambda: _env('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production') or 'production'))
    sentry_release: str = field(default_factory=lambda: _env('SENTRY_RELEASE', 'quizhub'))
    sentry_traces_sample_rate: float = field(default_factory=lambda: _safe_rate(os.getenv('SENTRY_TRACES_SAMPLE_RATE', '0')))
    algolia_app_id: str = field(default_factory=lambda: _env('ALGOLIA_APP_ID'))
    migration_token: str = field(default_factory=lambda: _env('MIGRATION_TOKEN'))


def _safe_rate(raw):
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return 0.0
    return min(max(value, 0.0), 1.0)


def resolve_runtime_env() -> str:
    return (
        os.getenv('SENTRY_ENVIRONMENT')
        or os.getenv('FLASK_ENV')
        or os.getenv('ENV')
        or ('production' if os.getenv('RENDER') else 'development')
    ).strip().lower()


def load_config() -> AppConfig:
    config = AppConfig()
    is_dev_like = resolve_runtime_env() in DEV_ENV_NAMES
    if not is_dev_like and not config.flask_secret_key.strip():
        raise RuntimeError('FLASK_SECRET_KEY must be set in non-development environments.')
    return config
