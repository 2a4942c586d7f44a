import os
from flask import Flask, jsonify
from config.config import config, load_settings
from scheduling.database import init_db
from scheduling.errors import SchedulingError
from scheduling.routes.public_bookings import bp as public_bookings_bp
from scheduling.services.task_queue import get_task_queue
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(config_name=None):
    """Create the Flask application serving the public booking API"""
    config_name = config_name or os.environ.get('SLOTBOOK_ENV', 'default')
    config_class = config.get(config_name, config['default'])

    app = Flask(__name__)
    app.config.from_object(config_class)

    init_db()

    app.register_blueprint(public_bookings_bp, url_prefix='/api/book')

    @app.errorhandler(SchedulingError)
    def handle_scheduling_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'}), 200

    if not app.config.get('TESTING'):
        get_task_queue(load_settings(config_class)).start()

    logger.info(f"Slotbook app created with '{config_name}' configuration")
    return app
