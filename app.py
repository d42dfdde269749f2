from flask import Flask, jsonify

import logging
import os
from dotenv import load_dotenv

from clinical_ocr.config import MAX_UPLOAD_BYTES
from ocr_routes import register_ocr_routes

# Load environment variables from .env file
load_dotenv(override=True)

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


def create_app(pipeline=None):
    """Build the Flask app; tests pass a pipeline with a scripted engine"""
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_BYTES

    register_ocr_routes(app, pipeline=pipeline)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app


if __name__ == '__main__':
    debug_mode = os.getenv('FLASK_ENV') == 'development' or os.getenv('DEBUG', 'False').lower() == 'true'
    create_app().run(debug=debug_mode, host='0.0.0.0', port=int(os.getenv('PORT', 5000)))
