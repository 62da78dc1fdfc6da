"""
API tests through the Flask test client.
"""

import pytest
from benefit_flow import create_app
from benefit_flow.review_summary import ReviewLookups


UNKNOWN_ID = '3f2b8a6e-1c4d-4e5f-9a7b-2c3d4e5f6a7b'

ADULT_ANSWERS = {
    'type_of_application': 'adult',
    'tax_filing': True,
    'date_of_birth': '1955-03-10',
    'applicant_information': {'first_name': 'Jane', 'last_name': 'Doe', 'social_insurance_number': '123 456 789'},
    'marital_status': 'single',
    'contact_information': {'phone_number': '613-555-0100', 'email': 'jane@example.com'},
    'mailing_address': {'address': '1 Main St', 'city': 'Ottawa', 'country': 'CAN', 'province': 'ON'},
    'is_home_address_same_as_mailing_address': True,
    'communication_preferences': {'preferred_language': 'fr', 'preferred_method': 'mail'},
    'dental_insurance': False,
    'dental_benefits': {'has_federal_benefits': True, 'federal_social_program': 'nihb'},
}

CHILD_INFORMATION = {
    'first_name': 'Sam',
    'last_name': 'Doe',
    'date_of_birth': '2015-04-20',
    'is_parent': True,
}


@pytest.fixture
def app():
    return create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'APPLICATION_CURRENT_DATE': '2025-06-01',
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def application_id(client):
    response = client.post('/api/applications', json={})
    assert response.status_code == 201
    return response.get_json()['id']


class TestApplications:
    def test_start(self, client):
        response = client.post('/api/applications', json={'context': 'intake'})
        data = response.get_json()
        assert response.status_code == 201
        assert data['ok'] is True
        assert data['state']['context'] == 'intake'
        assert data['state']['children'] == []

    def test_start_without_body(self, client):
        assert client.post('/api/applications').status_code == 201

    def test_start_unknown_context(self, client):
        response = client.post('/api/applications', json={'context': 'delegate'})
        assert response.status_code == 400
        assert response.get_json()['ok'] is False

    def test_get(self, client, application_id):
        response = client.get(f'/api/applications/{application_id}')
        data = response.get_json()
        assert response.status_code == 200
        assert data['state']['id'] == application_id
        assert data['sections']['applicant_information'] is False
        assert data['sections']['children'] is True

    def test_get_unknown(self, client):
        response = client.get(f'/api/applications/{UNKNOWN_ID}')
        assert response.status_code == 404
        assert response.get_json()['errors'][0]['code'] == 'not_found'

    def test_get_invalid_id(self, client):
        response = client.get('/api/applications/not-an-id')
        assert response.status_code == 404
        assert response.get_json()['errors'][0]['code'] == 'invalid_id'


class TestStepGuard:
    def test_entry_allowed(self, client, application_id):
        response = client.get(f'/api/flows/apply-adult/{application_id}',
                              query_string={'step': 'apply/{id}/tax-filing'})
        assert response.status_code == 200
        assert response.get_json()['step_id'] == 'apply/{id}/tax-filing'

    def test_type_mismatch_redirects(self, client, application_id):
        client.patch(f'/api/flows/apply-child/{application_id}', json={'type_of_application': 'child'})
        response = client.get(f'/api/flows/apply-adult/{application_id}',
                              query_string={'step': 'apply/{id}/adult/review-information'})
        assert response.status_code == 303
        assert response.headers['Location'] == f'/en/apply/{application_id}/type-application'
        assert response.get_json()['reason'] == 'type_mismatch'

    def test_confirmation_before_submission(self, client, application_id):
        response = client.get(f'/api/flows/apply-adult/{application_id}',
                              query_string={'step': 'apply/{id}/adult/confirmation'})
        assert response.status_code == 303
        assert response.headers['Location'] == f'/en/apply/{application_id}/terms-and-conditions'

    def test_unknown_flow(self, client, application_id):
        response = client.get(f'/api/flows/apply-delegate/{application_id}')
        assert response.status_code == 404
        assert response.get_json()['errors'][0]['code'] == 'unknown_flow'


class TestSave:
    def test_next_step(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}',
                                json={'type_of_application': 'adult', 'tax_filing': True})
        data = response.get_json()
        assert response.status_code == 200
        assert data['next_step']['step_id'] == 'apply/{id}/adult/date-of-birth'
        assert data['location'] == f'/en/apply/{application_id}/adult/date-of-birth'

    def test_language(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}?lang=fr',
                                json={'type_of_application': 'adult'})
        assert response.get_json()['location'] == f'/fr/apply/{application_id}/tax-filing'

    def test_invalid_patch(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}',
                                json={'tax_filing': 'yes', 'date_of_birth': '2030-01-01'})
        data = response.get_json()
        assert response.status_code == 422
        assert {e['field'] for e in data['errors']} == {'tax_filing', 'date_of_birth'}

    def test_unknown_field(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}', json={'favourite_colour': 'blue'})
        assert response.status_code == 400

    def test_unknown_marital_status(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}', json={'marital_status': 'xyz'})
        errors = response.get_json()['errors']
        assert response.status_code == 422
        assert [(e['field'], e['code']) for e in errors] == [('marital_status', 'unknown_code')]

    def test_unknown_benefit_codes(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}', json={
            'dental_benefits': {'has_federal_benefits': True, 'federal_social_program': 'abc', 'province': 'XX'},
            'communication_preferences': {'preferred_language': 'de', 'preferred_method': 'mail'},
        })
        assert response.status_code == 422
        assert {e['field'] for e in response.get_json()['errors']} == {
            'dental_benefits.federal_social_program',
            'dental_benefits.province',
            'communication_preferences.preferred_language',
        }

    def test_date_of_birth_reports_eligibility(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}',
                                json={'type_of_application': 'adult', 'date_of_birth': '1955-03-10'})
        assert response.get_json()['eligibility'] == {'eligible': True}

        response = client.patch(f'/api/flows/apply-adult/{application_id}', json={'tax_filing': True})
        assert 'eligibility' not in response.get_json()

    def test_eligibility_window_not_open(self):
        client = create_app({
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'APPLICATION_CURRENT_DATE': '2025-06-01',
            'APPLY_ELIGIBILITY_RULES': '[{"minAge": 65, "maxAge": 69, "startDate": "2025-07-01"}]',
        }).test_client()
        application_id = client.post('/api/applications', json={}).get_json()['id']
        response = client.patch(f'/api/flows/apply-adult/{application_id}', json={'date_of_birth': '1958-01-01'})
        assert response.get_json()['eligibility'] == {'eligible': False, 'start_date': '2025-07-01'}

    def test_missing_payload(self, client, application_id):
        response = client.patch(f'/api/flows/apply-adult/{application_id}')
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['code'] == 'missing_payload'

    def test_unknown_application(self, client):
        response = client.patch(f'/api/flows/apply-adult/{UNKNOWN_ID}', json={'tax_filing': True})
        assert response.status_code == 404


class TestReviewAndSubmit:
    def test_incomplete_review_redirects(self, client, application_id):
        client.patch(f'/api/flows/apply-adult/{application_id}', json={'type_of_application': 'adult'})
        response = client.get(f'/api/flows/apply-adult/{application_id}/review')
        assert response.status_code == 303
        assert response.headers['Location'] == f'/en/apply/{application_id}/tax-filing'

    def test_complete_flow(self, client, application_id):
        base = f'/api/flows/apply-adult/{application_id}'

        response = client.patch(base, json=ADULT_ANSWERS)
        assert response.get_json()['next_step']['reason'] == 'review'

        response = client.get(f'{base}/review')
        data = response.get_json()
        assert response.status_code == 200
        assert data['state']['age_category'] == 'seniors'
        assert data['state']['has_partner'] is False
        overview = data['summary']['overview']
        assert overview['applicant_name'] == 'Jane Doe'
        sections = {s['title']: s['items'] for s in data['summary']['sections']}
        assert sections['applicant_information']['marital_status'] == 'Single'
        assert sections['communication_preferences']['preferred_language'] == 'French'
        assert sections['dental']['federal_social_program'] == 'Non-Insured Health Benefits Program'

        # Review enters edit mode; later saves return to review
        response = client.patch(base, json={'contact_information': {'phone_number': '613-555-0199'}})
        assert response.get_json()['next_step']['reason'] == 'edit_mode'

        response = client.post(f'{base}/submit')
        data = response.get_json()
        assert response.status_code == 200
        assert len(data['submission_info']['confirmation_code']) == 12
        assert data['location'] == f'/en/apply/{application_id}/adult/confirmation'

        response = client.patch(base, json={'tax_filing': True})
        assert response.status_code == 409

        response = client.get(f'{base}/review')
        assert response.status_code == 303
        assert response.headers['Location'] == f'/en/apply/{application_id}/adult/confirmation'

        response = client.get(base, query_string={'step': 'apply/{id}/adult/confirmation'})
        assert response.status_code == 200

    def test_review_redirect_leaves_edit_mode(self, client, application_id):
        base = f'/api/flows/apply-adult/{application_id}'
        client.patch(base, json=ADULT_ANSWERS)
        client.get(f'{base}/review')
        client.patch(base, json={'dental_insurance': None})

        response = client.get(f'{base}/review')
        assert response.status_code == 303
        state = client.get(f'/api/applications/{application_id}').get_json()['state']
        assert state['edit_mode'] is False

    def test_review_with_code_missing_from_lookups(self, app, client, application_id):
        base = f'/api/flows/apply-adult/{application_id}'
        client.patch(base, json=ADULT_ANSWERS)
        app.extensions['benefit_flow.lookups'] = ReviewLookups.from_data(
            {'communication_methods': {'email': {'en': 'Email'}}}
        )

        response = client.get(f'{base}/review')
        data = response.get_json()
        assert response.status_code == 422
        assert data['ok'] is False
        assert data['errors'][0] == {'field': 'communication_methods', 'message': 'Unknown code',
                                     'code': 'unknown_code'}

    def test_submit_incomplete(self, client, application_id):
        response = client.post(f'/api/flows/apply-adult/{application_id}/submit')
        assert response.status_code == 303

    def test_clear(self, client, application_id):
        response = client.delete(f'/api/flows/apply-adult/{application_id}')
        assert response.status_code == 200
        assert client.get(f'/api/applications/{application_id}').status_code == 404


class TestChildren:
    def test_save_and_load_child(self, client, application_id):
        base = f'/api/flows/apply-child/{application_id}'
        client.patch(base, json={'type_of_application': 'child', 'tax_filing': True})

        response = client.patch(f'{base}/children/child-1', json={'information': CHILD_INFORMATION})
        data = response.get_json()
        assert response.status_code == 200
        assert data['next_step']['step_id'] == 'apply/{id}/child/children/{child_id}/dental-insurance'
        assert data['location'] == f'/en/apply/{application_id}/child/children/child-1/dental-insurance'

        response = client.get(f'{base}/children/child-1')
        data = response.get_json()
        assert response.status_code == 200
        assert data['child_number'] == 1
        assert data['is_new'] is True
        assert data['child']['information']['first_name'] == 'Sam'

    def test_invalid_child(self, client, application_id):
        response = client.patch(f'/api/flows/apply-child/{application_id}/children/child-1',
                                json={'information': dict(CHILD_INFORMATION, is_parent='no')})
        assert response.status_code == 422

    def test_unknown_child_section(self, client, application_id):
        response = client.patch(f'/api/flows/apply-child/{application_id}/children/child-1',
                                json={'age_category': 'children'})
        assert response.status_code == 400

    def test_reserved_body_keys_rejected(self, client, application_id):
        response = client.patch(f'/api/flows/apply-child/{application_id}/children/c1',
                                json={'information': CHILD_INFORMATION, 'child_id': 'x'})
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['code'] == 'invalid'

    def test_malformed_child_id_rejected(self, client, application_id):
        response = client.patch(f'/api/flows/apply-child/{application_id}/children/{"x" * 65}',
                                json={'dental_insurance': True})
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['code'] == 'invalid_child_id'
        state = client.get(f'/api/applications/{application_id}').get_json()['state']
        assert state['children'] == []

    def test_unknown_child_program(self, client, application_id):
        response = client.patch(f'/api/flows/apply-child/{application_id}/children/c1',
                                json={'dental_benefits': {'has_federal_benefits': True,
                                                          'federal_social_program': 'abc'}})
        assert response.status_code == 422
        assert response.get_json()['errors'][0]['field'] == 'children[0].dental_benefits.federal_social_program'

    def test_unknown_child_redirects(self, client, application_id):
        response = client.get(f'/api/flows/apply-child/{application_id}/children/child-9')
        assert response.status_code == 303
        assert response.headers['Location'] == f'/en/apply/{application_id}/child/children/index'

    def test_delete_child(self, client, application_id):
        base = f'/api/flows/apply-child/{application_id}'
        client.patch(f'{base}/children/child-1', json={'dental_insurance': True})
        response = client.delete(f'{base}/children/child-1')
        assert response.get_json()['state']['children'] == []


class TestErrors:
    def test_unknown_route(self, client):
        response = client.get('/api/unknown')
        assert response.status_code == 404
        assert response.get_json()['ok'] is False
