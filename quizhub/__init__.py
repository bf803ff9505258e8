from .config import load_config
from .extensions import init_extensions
from .logging_config import configure_logging


def create_app():
    """App factory entrypoint.

    Routes and process-wide clients live in ``quizhub.runtime``; the factory
    validates configuration, sets up logging and attaches optional extensions.
    """
    config = load_config()
    configure_logging(config.log_level)

    from .runtime import app as runtime_app

    init_extensions(runtime_app, config)
    return runtime_app
