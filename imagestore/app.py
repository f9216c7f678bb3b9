import logging

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .cli import register_commands
from .config import Config
from .metadata import create_metadata_store
from .models import db
from .routes import images_bp
from .storage import StorageNotConfigured, create_storage

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s :: %(message)s"


def register_error_handlers(app):
    @app.errorhandler(StorageNotConfigured)
    def storage_not_configured(e):
        return jsonify({"error": str(e)}), 503

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e):
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config["LOG_LEVEL"], format=LOG_FORMAT)

    origins = app.config["CORS_ORIGINS"]
    if origins != "*":
        origins = [o.strip() for o in origins.split(",") if o.strip()]
    CORS(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)

    app.extensions["imagestore.storage"] = create_storage(app.config)
    app.extensions["imagestore.metadata"] = create_metadata_store(app.config)

    app.register_blueprint(images_bp, url_prefix="/api")
    register_error_handlers(app)
    register_commands(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "healthy"})

    if app.config["METADATA_BACKEND"] == "sql":
        with app.app_context():
            db.create_all()

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, host="0.0.0.0", port=5000)
