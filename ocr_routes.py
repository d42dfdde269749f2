"""
Clinical OCR Flask Routes
"""

import logging

from flask import request, jsonify
from werkzeug.utils import secure_filename

from clinical_ocr.config import ALLOWED_EXTENSIONS, CONFIDENCE_THRESHOLDS
from clinical_ocr.exceptions import ClinicalOCRError

logger = logging.getLogger(__name__)


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def _form_float(name, default):
    value = request.form.get(name)
    if value is None or value == '':
        return default
    value = float(value)
    if not 0 <= value <= 100:
        raise ValueError(f"{name} must be between 0 and 100")
    return value


def _form_bool(name, default=True):
    value = request.form.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def register_ocr_routes(app, pipeline=None):
    """Register clinical OCR routes; the pipeline is built on first use if not given"""

    state = {'pipeline': pipeline}

    def get_pipeline():
        if state['pipeline'] is None:
            from clinical_ocr import ClinicalOCRPipeline
            state['pipeline'] = ClinicalOCRPipeline()
        return state['pipeline']

    @app.route('/api/ocr/recognize', methods=['POST'])
    def recognize_upload():
        if 'image' not in request.files:
            return jsonify({'error': 'No file uploaded'}), 400

        file = request.files['image']
        filename = secure_filename(file.filename or '')
        if not filename or not allowed_file(filename):
            return jsonify({'error': 'Invalid file'}), 400

        try:
            target_confidence = _form_float('target_confidence', CONFIDENCE_THRESHOLDS['target'])
            min_confidence = _form_float('min_confidence', CONFIDENCE_THRESHOLDS['minimum'])
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        image_bytes = file.read()
        logger.info(f"[OCR] Upload received: {filename} ({len(image_bytes)} bytes)")

        try:
            result = get_pipeline().recognize(
                image_bytes,
                target_confidence=target_confidence,
                min_confidence=min_confidence,
                apply_correction=_form_bool('apply_correction'),
            )
        except ClinicalOCRError as e:
            logger.error(f"[OCR] Recognition failed for {filename}: {e}", exc_info=True)
            return jsonify({'error': 'OCR processing failed', 'details': str(e)}), 500
        return jsonify(result.to_dict())

    @app.route('/api/ocr/correct', methods=['POST'])
    def correct_text():
        data = request.get_json(silent=True) or {}
        text = data.get('text')
        if not isinstance(text, str):
            return jsonify({'error': 'Text required'}), 400
        corrected = get_pipeline().corrector.correct(text)
        return jsonify({'text': text, 'corrected_text': corrected})

    @app.route('/api/ocr/suggest')
    def suggest_terms():
        word = request.args.get('word', '').strip()
        if not word:
            return jsonify({'error': 'Word required'}), 400
        top_n = request.args.get('top_n', 3, type=int)
        if top_n < 1:
            return jsonify({'error': 'top_n must be at least 1'}), 400
        suggestions = get_pipeline().corrector.suggest(word, top_n=top_n)
        return jsonify({
            'word': word,
            'suggestions': [{'term': term, 'distance': distance} for term, distance in suggestions],
        })

    logger.info("✅ Clinical OCR Routes Registered")
