# /app/__init__.py
import os
import logging
from flask import Flask
from dotenv import load_dotenv
from config import ProductionConfig
from services.database import init_db_command, init_db, create_db_manager
from services.config_service import ConfigManager
from pathlib import Path
from app.routes import pricebook_bp


load_dotenv()


def init_sentry():
    """Turn on Sentry when SENTRY_DSN is set; the pricebook runs fine without it."""
    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        environment = os.getenv("FLASK_ENV") or os.getenv("ENV") or "development"
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=environment,
            integrations=[
                FlaskIntegration(),
                # import warnings become breadcrumbs, failures become events
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
            attach_stacktrace=True,
            debug=os.getenv("SENTRY_DEBUG", "0") == "1",
        )
        logging.info(f"Sentry initialized for environment: {environment}")
    except ImportError:
        logging.warning("sentry-sdk not installed, error tracking disabled")
    except Exception as e:
        logging.error(f"Failed to initialize Sentry: {e}")


def create_app(config_name: str = ""):
    import time
    from flask import g

    # Initialize Sentry before creating app to catch initialization errors
    init_sentry()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(ProductionConfig)

    # Secret
    app.secret_key = os.getenv("FLASK_SECRET", os.urandom(24))

    if config_name:
        app.config.from_object(f"config.{config_name}Config")

    # Merge JSON config; PRICEBOOK_DATABASE from the environment wins over it
    config_manager = ConfigManager(os.getenv("PRICEBOOK_CONFIG", "config.json"))
    app.config.update(config_manager.config)
    app.config["pricebook"] = config_manager.pricebook_settings()
    if os.getenv("PRICEBOOK_DATABASE"):
        app.config["database"] = os.getenv("PRICEBOOK_DATABASE")

    # base dirs
    project_root = Path(__file__).resolve().parent.parent
    instance_root = Path(app.instance_path)
    instance_root.mkdir(parents=True, exist_ok=True)
    app.config["PROJECT_ROOT"] = str(project_root)
    app.config["INSTANCE_ROOT"] = str(instance_root)

    def _set_path(key: str, default_rel: str | Path, *, base: str = "instance", is_file: bool = False):
        """
        Resolve a config path and ensure its directory exists.
        Absolute paths are kept, relative ones are anchored to `instance` (default) or `project`.
        """
        val = app.config.get(key)
        base_dir = instance_root if base == "instance" else project_root

        if val:
            p = Path(val)
            if not p.is_absolute():
                p = (base_dir / p).resolve()
        else:
            p = (base_dir / Path(default_rel)).resolve()

        (p.parent if is_file else p).mkdir(parents=True, exist_ok=True)
        app.config[key] = str(p)
        return p

    _set_path("database", "pricebook.db", base="instance", is_file=True)

    # Logging (basic)
    logging.basicConfig(
        level=logging.DEBUG if app.config.get("DEBUG") else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,  # prevent duplicate handlers in some reload scenarios
    )
    logging.debug("database=%s  max_category_levels=%s",
                  app.config["database"], app.config["pricebook"].get("max_category_levels"))
    if config_manager.last_load_error:
        logging.warning(f"config.json could not be parsed: {config_manager.last_load_error}")

    # App-wide DB manager, used by the CLI and to create tables at startup
    app.extensions["db_manager"] = create_db_manager(app.config["database"])
    init_db(app.extensions["db_manager"])

    @app.before_request
    def before_request():
        """Per-request DB + request timing."""
        g.db = create_db_manager(app.config["database"])
        g.start_time = time.time()

    @app.after_request
    def after_request(response):
        if hasattr(g, "start_time"):
            duration = time.time() - g.start_time
            response.headers["X-Request-Duration"] = f"{duration:.3f}"
        return response

    @app.teardown_request
    def teardown_request(_):
        db = getattr(g, "db", None)
        if db is not None:
            db.close()

    # Blueprints
    app.register_blueprint(pricebook_bp)

    # CLI
    app.cli.add_command(init_db_command)  # type: ignore

    return app
