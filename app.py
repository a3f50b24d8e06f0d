"""
Flask Web Application for the Inspection Form Engine

JSON API over a single form session. Rendering is left to the client.
"""

from flask import Flask, request, jsonify
import logging
import os

from inspection_form.core.form_session import SubmissionBlocked, build_session
from inspection_form.core.schema_repository import DEFAULT_SCHEMA_PATH
from inspection_form.persistence import DEFAULT_DRAFT_PATH, DEFAULT_SUBMISSIONS_DIR, SubmissionArchive
from inspection_form.results import GateCascadeConflict
from inspection_form.utils.display_helpers import section_view_to_dict

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Global state for the active inspection (single active editor)
current_inspection = {
    'session': None,
    'archive': None,
}


def get_session():
    """Form session, created on first use from the configured paths."""
    if current_inspection['session'] is None:
        schema_path = os.environ.get('INSPECTION_SCHEMA_PATH', DEFAULT_SCHEMA_PATH)
        draft_path = os.environ.get('INSPECTION_DRAFT_PATH', DEFAULT_DRAFT_PATH)
        current_inspection['session'] = build_session(schema_path, draft_path)
        logger.info(f"Inspection session created (schema {schema_path})")
    return current_inspection['session']


def get_archive():
    if current_inspection['archive'] is None:
        base_dir = os.environ.get('INSPECTION_SUBMISSIONS_DIR', DEFAULT_SUBMISSIONS_DIR)
        current_inspection['archive'] = SubmissionArchive(base_dir)
    return current_inspection['archive']


def _error(message, status):
    return jsonify({
        'success': False,
        'error': message
    }), status


@app.route('/api/schema')
def get_schema():
    """Field dictionary as loaded"""
    try:
        session = get_session()
        return jsonify({
            'success': True,
            'version': session.schema.version,
            'schema': session.schema.get_document()
        })
    except Exception as e:
        logger.error(f"Error loading schema: {e}")
        return _error(str(e), 500)


@app.route('/api/state')
def get_state():
    """Current answer tree and visible steps"""
    try:
        session = get_session()
        return jsonify({
            'success': True,
            'state': session.state,
            'current_step': session.current_step,
            'steps': [
                {'id': page.id, 'title': page.title, 'section_ids': list(page.section_ids)}
                for page in session.visible_steps()
            ]
        })
    except Exception as e:
        logger.error(f"Error reading state: {e}")
        return _error(str(e), 500)


@app.route('/api/answer', methods=['POST'])
def submit_answer():
    """Write one answer; 409 when a gate flip needs confirmation"""
    try:
        data = request.get_json(silent=True) or {}
        key = data.get('key')
        if not key or 'answer' not in data:
            return _error("Both 'key' and 'answer' are required", 400)

        result = get_session().apply_answer(
            key,
            data['answer'],
            confirmed=bool(data.get('confirmed', False))
        )

        if isinstance(result, GateCascadeConflict):
            return jsonify({
                'success': False,
                'conflict': True,
                'field_key': result.field_key,
                'clear_paths': result.clear_paths,
                'message': result.message
            }), 409

        return jsonify({
            'success': True,
            'cleared_paths': result.cleared_paths,
            'auto_skipped': result.auto_skipped,
            'issue_capture': result.issue_capture
        })

    except Exception as e:
        logger.error(f"Error applying answer: {e}")
        return _error(str(e), 500)


@app.route('/api/clear', methods=['POST'])
def clear_paths():
    """Delete answers at the given paths"""
    try:
        data = request.get_json(silent=True) or {}
        paths = data.get('paths')
        if not isinstance(paths, list):
            return _error("'paths' must be a list", 400)

        get_session().clear(paths)
        return jsonify({
            'success': True,
            'cleared_paths': paths
        })
    except Exception as e:
        logger.error(f"Error clearing paths: {e}")
        return _error(str(e), 500)


@app.route('/api/section/<section_id>')
def get_section(section_id):
    """Renderable view of one section"""
    try:
        view = get_session().render_section(section_id)
        if view is None:
            return _error(f"Unknown section: {section_id}", 404)
        return jsonify({
            'success': True,
            'section': section_view_to_dict(view)
        })
    except Exception as e:
        logger.error(f"Error rendering section {section_id}: {e}")
        return _error(str(e), 500)


@app.route('/api/validate')
def validate():
    """Validate one step (?step=N) or the whole form"""
    try:
        session = get_session()
        step = request.args.get('step')
        if step is not None:
            try:
                index = int(step)
            except ValueError:
                return _error("'step' must be an integer", 400)
            errors = session.validate_step(index)
        else:
            errors = session.validate_all()

        return jsonify({
            'success': True,
            'valid': not errors,
            'errors': errors
        })
    except Exception as e:
        logger.error(f"Error validating: {e}")
        return _error(str(e), 500)


@app.route('/api/issue/<path:field_key>', methods=['POST'])
def update_issue(field_key):
    """Update location / notes / photo ids captured for a field"""
    try:
        data = request.get_json(silent=True) or {}
        photo_ids = data.get('photo_ids')
        if photo_ids is not None and not isinstance(photo_ids, list):
            return _error("'photo_ids' must be a list", 400)

        detail = get_session().update_issue_detail(
            field_key,
            location=data.get('location'),
            notes=data.get('notes'),
            photo_ids=photo_ids
        )
        return jsonify({
            'success': True,
            'issue_detail': detail.to_dict()
        })
    except Exception as e:
        logger.error(f"Error updating issue detail for {field_key}: {e}")
        return _error(str(e), 500)


@app.route('/api/photos/<section_id>', methods=['POST'])
def stage_photo(section_id):
    """Stage a section photo (at most two per section, extras ignored)"""
    try:
        data = request.get_json(silent=True) or {}
        data_url = data.get('dataUrl')
        if not data_url:
            return _error("'dataUrl' is required", 400)

        photos = get_session().add_staged_photo(section_id, data.get('caption', ''), data_url)
        return jsonify({
            'success': True,
            'staged_photos': [p.to_dict() for p in photos]
        })
    except Exception as e:
        logger.error(f"Error staging photo for {section_id}: {e}")
        return _error(str(e), 500)


@app.route('/api/submit', methods=['POST'])
def submit_inspection():
    """Validate everything and hand the payload to the submission archive"""
    try:
        result = get_session().submit(get_archive())
        return jsonify({
            'success': True,
            'inspection_id': result.inspection_id,
            'submitted_at': result.submitted_at
        })
    except SubmissionBlocked as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'errors': e.errors
        }), 422
    except Exception as e:
        logger.error(f"Error submitting inspection: {e}")
        return _error(str(e), 500)


@app.route('/api/reset', methods=['POST'])
def reset_inspection():
    """Discard the draft and start over"""
    try:
        state = get_session().reset()
        return jsonify({
            'success': True,
            'state': state
        })
    except Exception as e:
        logger.error(f"Error resetting inspection: {e}")
        return _error(str(e), 500)


if __name__ == '__main__':
    print("\n" + "="*60)
    print("INSPECTION FORM ENGINE - JSON API")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=False, host='0.0.0.0', port=5000)
