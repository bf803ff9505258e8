try:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
except Exception:
    sentry_sdk = None
    FlaskIntegration = None


def init_sentry(config) -> bool:
    if not config.sentry_dsn_backend or not sentry_sdk or not FlaskIntegration:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn_backend,
        integrations=[FlaskIntegration()],
        traces_sample_rate=config.sentry_traces_sample_rate,
        send_default_pii=False,
        environment=config.sentry_environment,
        release=config.sentry_release,
    )
    return True


def init_extensions(app, config=None) -> None:
    """Attach optional integrations to the Flask app.

    Safe to call more than once; Sentry is only initialised on the first call
    that carries a DSN.
    """
    if app is None:
        return
    if not hasattr(app, 'extensions'):
        return
    state = app.extensions.setdefault('quizhub', {})
    if config is not None and not state.get('sentry_enabled'):
        state['sentry_enabled'] = init_sentry(config)
    state.setdefault('sentry_enabled', False)
    state['factory_initialized'] = True
