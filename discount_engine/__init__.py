"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from discount_engine.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize Redis Cache
    from discount_engine.services.cache_service import init_cache
    init_cache(app)

    # Setup Prometheus metrics instrumentation
    from discount_engine.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Load company/branch/staff context before each request
    from discount_engine.middleware import load_request_context

    @app.before_request
    def before_request_handler():
        load_request_context()

    # Error Handlers
    from discount_engine.exceptions import DiscountEngineError

    @app.errorhandler(DiscountEngineError)
    def handle_discount_engine_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"DiscountEngineError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"DiscountEngineError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from discount_engine.blueprints.discounts import discounts_bp
    from discount_engine.blueprints.metrics import metrics_bp

    app.register_blueprint(discounts_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from discount_engine.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
