"""
Flask routes for the benefit application flows.

JSON API over the state store and the flow validators:
- /api/applications: start a state, inspect it
- /api/flows/<flow_id>/<application_id>: guard steps, save patches, review,
  load one child, submit, clear

Redirect signals are answered with 303 and a Location header pointing at the
step path, plus the signal itself in the body.
"""

from flask import Blueprint, current_app, jsonify, request

from benefit_flow import db
from benefit_flow.application_state import remove_child, upsert_child
from benefit_flow.derivations import get_eligibility_by_age, get_section_statuses
from benefit_flow.flow_validation import (
    CHILD_ID_PATTERN,
    UnknownFlowError,
    check_flow_entry,
    load_single_child_state,
    next_step_after_save,
    validate_flow_state,
)
from benefit_flow.flows import get_flow
from benefit_flow.review_summary import ReviewLookups, UnknownCodeError, build_review_summary
from benefit_flow.state_store import StateLockedError, StateNotFoundError, get_state_store
from benefit_flow.utils import generate_confirmation_code, utcnow_iso
from benefit_flow.validation import BrokenInvariantError, NeedsStep, validate_patch


LOOKUPS_EXTENSION_KEY = 'benefit_flow.lookups'

# Create blueprints
applications_bp = Blueprint('applications', __name__, url_prefix='/api/applications')
flows_bp = Blueprint('flows', __name__, url_prefix='/api/flows')


def _lang() -> str:
    return request.args.get('lang') or current_app.config.get('DEFAULT_LANGUAGE', 'en')


def _get_lookups() -> ReviewLookups:
    lookups = current_app.extensions.get(LOOKUPS_EXTENSION_KEY)
    if lookups is None:
        lookups = ReviewLookups.from_data(current_app.config.get('LOOKUP_DATA'))
        current_app.extensions[LOOKUPS_EXTENSION_KEY] = lookups
    return lookups


def _redirect_response(step: NeedsStep):
    """Answer a redirect signal with 303 and the step path."""
    location = step.path(_lang())
    body = step.to_dict()
    body['location'] = location
    response = jsonify(body)
    response.status_code = 303
    response.headers['Location'] = location
    return response


def _missing_payload():
    return jsonify({
        'ok': False,
        'errors': [{'field': '', 'message': 'No JSON payload provided', 'code': 'missing_payload'}]
    }), 400


@applications_bp.route('', methods=['POST'])
def start_application():
    """
    Start a new application state.

    Request body (optional):
        context: 'intake' or 'renewal'
        application_year: {application_year_id, tax_year, ...}

    Returns:
        JSON response with the new state
    """
    payload = request.get_json(silent=True) or {}
    store = get_state_store()
    state = store.start(
        context=payload.get('context'),
        application_year=payload.get('application_year')
    )
    current_app.logger.info(f'Application started; id: [{state.id}]')
    return jsonify({'ok': True, 'id': state.id, 'state': state.to_dict()}), 201


@applications_bp.route('/<application_id>', methods=['GET'])
def get_application(application_id: str):
    """
    Get the raw state and its section completion flags.
    """
    state = get_state_store().load(application_id)
    return jsonify({
        'ok': True,
        'state': state.to_dict(),
        'sections': get_section_statuses(state),
    }), 200


@flows_bp.route('/<flow_id>/<application_id>', methods=['GET'])
def enter_step(flow_id: str, application_id: str):
    """
    Guard a page load.

    Query params:
        step: Step id the user is trying to reach (defaults to the flow entry)

    Returns:
        200 with the state when the step may be shown, 303 otherwise
    """
    flow = get_flow(flow_id)
    state = get_state_store().load(application_id)
    step_id = request.args.get('step') or flow.entry_step

    redirect_step = check_flow_entry(flow, state, step_id)
    if redirect_step is not None:
        return _redirect_response(redirect_step)

    return jsonify({'ok': True, 'step_id': step_id, 'state': state.to_dict()}), 200


@flows_bp.route('/<flow_id>/<application_id>', methods=['PATCH'])
def save_step(flow_id: str, application_id: str):
    """
    Save a page's patch and compute the next step.

    Returns:
        JSON response with the saved state and the next step; a saved date
        of birth also reports its age-based eligibility
    """
    flow = get_flow(flow_id)
    payload = request.get_json(silent=True)
    if not payload:
        return _missing_payload()

    result = validate_patch(payload, lookups=_get_lookups())
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    store = get_state_store()
    state = store.save(application_id, payload)
    next_step = next_step_after_save(flow, state)

    current_app.logger.info(
        f'Step saved; flow: [{flow.id}], id: [{state.id}], next step: [{next_step.step_id}]'
    )
    body = {
        'ok': True,
        'state': state.to_dict(),
        'next_step': next_step.to_dict(),
        'location': next_step.path(_lang()),
    }
    if payload.get('date_of_birth') and state.date_of_birth:
        body['eligibility'] = get_eligibility_by_age(state.date_of_birth).to_dict()
    return jsonify(body), 200


@flows_bp.route('/<flow_id>/<application_id>/review', methods=['GET'])
def review(flow_id: str, application_id: str):
    """
    Load the review page.

    An incomplete state redirects to its first unmet step and leaves edit
    mode. A complete one enters edit mode, so later saves return here.
    """
    flow = get_flow(flow_id)
    store = get_state_store()
    state = store.load(application_id)

    redirect_step = check_flow_entry(flow, state, flow.review_step)
    if redirect_step is not None:
        return _redirect_response(redirect_step)

    result = validate_flow_state(flow, state)
    if not result.ok:
        if state.edit_mode:
            store.save(application_id, {'edit_mode': False})
        return _redirect_response(result)

    if not state.edit_mode:
        store.save(application_id, {'edit_mode': True})

    summary = build_review_summary(result.state, _get_lookups(), _lang())
    return jsonify({
        'ok': True,
        'state': result.state.to_dict(),
        'summary': summary.to_dict(),
    }), 200


@flows_bp.route('/<flow_id>/<application_id>/children/<child_id>', methods=['GET'])
def get_child(flow_id: str, application_id: str, child_id: str):
    """Load one child for its own pages."""
    flow = get_flow(flow_id)
    state = get_state_store().load(application_id)

    redirect_step = check_flow_entry(flow, state, flow.children_index_step or flow.entry_step)
    if redirect_step is not None:
        return _redirect_response(redirect_step)

    result = load_single_child_state(flow, state, child_id)
    if not result.ok:
        return _redirect_response(result)

    return jsonify(result.to_dict()), 200


@flows_bp.route('/<flow_id>/<application_id>/children/<child_id>', methods=['PATCH'])
def save_child(flow_id: str, application_id: str, child_id: str):
    """
    Create or update one child.

    Request body: any of information, dental_insurance, dental_benefits
    """
    flow = get_flow(flow_id)
    payload = request.get_json(silent=True)
    if not payload or not isinstance(payload, dict):
        return _missing_payload()

    if not CHILD_ID_PATTERN.match(child_id):
        return jsonify({
            'ok': False,
            'errors': [{'field': 'child_id', 'message': 'Invalid child id', 'code': 'invalid_child_id'}]
        }), 400

    result = validate_patch({'children': [dict(payload, id=child_id)]}, lookups=_get_lookups())
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    store = get_state_store()
    state = store.load(application_id)
    state = store.save(application_id, {'children': upsert_child(state, child_id, payload).children})
    next_step = next_step_after_save(flow, state)

    return jsonify({
        'ok': True,
        'state': state.to_dict(),
        'next_step': next_step.to_dict(),
        'location': next_step.path(_lang()),
    }), 200


@flows_bp.route('/<flow_id>/<application_id>/children/<child_id>', methods=['DELETE'])
def delete_child(flow_id: str, application_id: str, child_id: str):
    """Remove one child."""
    get_flow(flow_id)
    store = get_state_store()
    state = store.load(application_id)
    state = store.save(application_id, {'children': remove_child(state, child_id).children})
    return jsonify({'ok': True, 'state': state.to_dict()}), 200


@flows_bp.route('/<flow_id>/<application_id>/submit', methods=['POST'])
def submit(flow_id: str, application_id: str):
    """
    Submit a complete application.

    Returns:
        JSON response with the submission info and the confirmation step
    """
    flow = get_flow(flow_id)
    store = get_state_store()
    state = store.load(application_id)

    redirect_step = check_flow_entry(flow, state, flow.review_step)
    if redirect_step is not None:
        return _redirect_response(redirect_step)

    result = validate_flow_state(flow, state)
    if not result.ok:
        return _redirect_response(result)

    archived = store.archive(application_id, {
        'confirmation_code': generate_confirmation_code(),
        'submitted_on': utcnow_iso(),
    })
    confirmation = NeedsStep(flow.confirmation_step, {'id': archived.id}, 'submitted')

    current_app.logger.info(f'Application submitted; flow: [{flow.id}], id: [{archived.id}]')
    return jsonify({
        'ok': True,
        'submission_info': archived.submission_info.to_dict(),
        'location': confirmation.path(_lang()),
    }), 200


@flows_bp.route('/<flow_id>/<application_id>', methods=['DELETE'])
def clear_application(flow_id: str, application_id: str):
    """Abandon an application."""
    get_flow(flow_id)
    get_state_store().clear(application_id)
    current_app.logger.info(f'Application cleared; flow: [{flow_id}], id: [{application_id}]')
    return jsonify({'ok': True}), 200


# Error handlers
@applications_bp.errorhandler(StateNotFoundError)
@flows_bp.errorhandler(StateNotFoundError)
def state_not_found(error):
    """Handle unknown, malformed or expired application ids."""
    current_app.logger.info(str(error))
    return jsonify({
        'ok': False,
        'errors': [{'field': 'id', 'message': 'Application not found', 'code': error.reason}]
    }), 404


@flows_bp.errorhandler(UnknownFlowError)
def flow_not_found(error):
    return jsonify({
        'ok': False,
        'errors': [{'field': 'flow_id', 'message': str(error), 'code': 'unknown_flow'}]
    }), 404


@applications_bp.errorhandler(StateLockedError)
@flows_bp.errorhandler(StateLockedError)
def state_locked(error):
    """Handle changes to a submitted application."""
    return jsonify({
        'ok': False,
        'errors': [{'field': 'id', 'message': 'Application has been submitted', 'code': 'locked'}]
    }), 409


@applications_bp.errorhandler(ValueError)
@flows_bp.errorhandler(ValueError)
def invalid_request(error):
    """Handle patches that cannot be applied to the state."""
    return jsonify({
        'ok': False,
        'errors': [{'field': '', 'message': str(error), 'code': 'invalid'}]
    }), 400


@flows_bp.errorhandler(UnknownCodeError)
def unknown_code(error):
    """Handle stored codes missing from a lookup table."""
    current_app.logger.warning(str(error))
    return jsonify({
        'ok': False,
        'errors': [{'field': error.lookup, 'message': 'Unknown code', 'code': 'unknown_code'}]
    }), 422


@flows_bp.errorhandler(BrokenInvariantError)
def broken_invariant(error):
    """Handle flow table defects; never retried."""
    db.session.rollback()
    current_app.logger.error(f'Broken invariant: {str(error)}')
    return jsonify({'ok': False, 'errors': [error.to_dict()]}), 500
