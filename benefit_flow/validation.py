"""
Validation results and patch format checks.

Flow Validation Results:
========================
- NeedsStep: the first unmet prerequisite; names the step to send the user to
  and its route parameters (application id, and child id inside a child record)
- ReviewReady: every prerequisite holds; carries the normalized ReviewState
- BrokenInvariantError: a field the flow assumes was enforced earlier is
  absent with no step to collect it. This is a flow table defect and is
  raised, never returned.

Incomplete state is the normal condition of an in-progress application, so
NeedsStep is returned rather than raised.

Patch Format Rules:
===================
Leaf fields are checked before a patch reaches the derivations, which assume
pre-validated primitives.

1. ENUMS
   - type_of_application: adult, child, adult-child, children, family, delegate
   - context: intake, renewal
2. BOOLEANS
   - tax_filing, all_children_under_18, living_independently,
     disability_tax_credit, has_marital_status_changed, email_verified,
     dental_insurance, is_home_address_same_as_mailing_address, edit_mode
3. DATES
   - date_of_birth (and each child's): YYYY-MM-DD, not in the future
4. APPLICANT / PARTNER
   - first_name, last_name: required, max 100 chars, no HTML
   - social_insurance_number: 9 digits (spaces allowed)
   - partner year_of_birth: 4 digits
5. CONTACT
   - email: valid format
   - phone numbers: 8-20 chars, digits/spaces/hyphens/parens only
6. LOOKUP CODES
   - marital_status, communication languages and methods, benefit programs
     and provinces must be known to their lookup table
"""

import re
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, List, Optional

from benefit_flow.application_state import (
    APPLICATION_CONTEXTS,
    TYPES_OF_APPLICATION,
    ApplicationState,
    ReviewState,
)
from benefit_flow.derivations import (
    AgeCategory,
    applicant_information_state_has_partner,
    effective_marital_status,
    get_age_category_from_date_string,
)
from benefit_flow.eligibility_rules import EligibilityRules, get_rules
from benefit_flow.review_summary import DEFAULT_LOOKUPS, ReviewLookups, StaticLookupService
from benefit_flow.utils import parse_iso_date, path_for


@dataclass
class ValidationError:
    """Represents a single validation error with precise field path."""
    field: str
    message: str
    code: str
    section: str = ''


@dataclass
class ValidationResult:
    """Container for patch validation results."""
    errors: List[ValidationError] = field(default_factory=list)
    is_valid: bool = True

    def add_error(self, field: str, message: str, code: str = 'invalid', section: str = ''):
        """Add a validation error."""
        self.errors.append(ValidationError(field, message, code, section))
        self.is_valid = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            'ok': self.is_valid,
            'errors': [
                {'field': e.field, 'message': e.message, 'code': e.code, 'section': e.section}
                for e in self.errors
            ]
        }


class BrokenInvariantError(Exception):
    """A required field is absent with no step that collects it."""

    def __init__(self, application_id: str, field: str, message: Optional[str] = None):
        self.application_id = application_id
        self.field = field
        super().__init__(
            message or f'Broken invariant; field [{field}] is undefined, application id: [{application_id}]'
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'message': 'Application state is invalid', 'code': 'broken_invariant'}


@dataclass(frozen=True)
class NeedsStep:
    """Redirect signal for the first unmet prerequisite."""
    step_id: str
    route_params: Dict[str, str] = field(default_factory=dict)
    reason: str = ''

    @property
    def ok(self) -> bool:
        return False

    def path(self, lang: str = 'en') -> str:
        return path_for(self.step_id, self.route_params, lang)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': False,
            'step_id': self.step_id,
            'route_params': dict(self.route_params),
            'reason': self.reason,
        }


@dataclass(frozen=True)
class ReviewReady:
    """Every prerequisite holds."""
    state: ReviewState

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {'ok': True, 'state': self.state.to_dict()}


class ValidationContext:
    """
    One validation pass over a state snapshot.

    Derived values are computed on first use and cached, so every check in a
    pass sees the same categorization.
    """

    def __init__(self, state: ApplicationState, today: Optional[Any] = None,
                 rules: Optional[EligibilityRules] = None):
        self.state = state
        self.rules = rules or get_rules()
        self.today = parse_iso_date(today) if today is not None else self.rules.today()

    @cached_property
    def age_category(self) -> AgeCategory:
        if not self.state.date_of_birth:
            raise BrokenInvariantError(self.state.id, 'date_of_birth')
        return get_age_category_from_date_string(self.state.date_of_birth, self.today, self.rules)

    @cached_property
    def has_partner(self) -> bool:
        return applicant_information_state_has_partner(effective_marital_status(self.state), self.rules)

    def age_category_of(self, date_of_birth: str) -> AgeCategory:
        return get_age_category_from_date_string(date_of_birth, self.today, self.rules)

    def route_params(self, child_id: Optional[str] = None) -> Dict[str, str]:
        params = {'id': self.state.id}
        if child_id is not None:
            params['child_id'] = child_id
        return params


# Constants for validation
MAX_NAME_LENGTH = 100

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^[0-9\s\-+()]{8,20}$')
SIN_PATTERN = re.compile(r'^\d{3}\s?\d{3}\s?\d{3}$')
YEAR_PATTERN = re.compile(r'^\d{4}$')
HTML_TAG_PATTERN = re.compile(r'<[^>]+>')

BOOLEAN_FIELDS = [
    'edit_mode',
    'tax_filing',
    'all_children_under_18',
    'living_independently',
    'disability_tax_credit',
    'has_marital_status_changed',
    'is_home_address_same_as_mailing_address',
    'email_verified',
    'dental_insurance',
]


def validate_boolean(value: Any, field_name: str, result: ValidationResult,
                     required: bool = True, section: str = '') -> bool:
    """Validate a boolean field with strict type checking."""
    if value is None:
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not isinstance(value, bool):
        result.add_error(field_name, 'Must be true or false', 'type', section)
        return False

    return True


def validate_string(value: Any, field_name: str, result: ValidationResult,
                    required: bool = True, max_length: int = MAX_NAME_LENGTH,
                    section: str = '') -> bool:
    """Validate a string field."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not isinstance(value, str):
        result.add_error(field_name, 'Must be text', 'type', section)
        return False

    str_value = value.strip()

    if len(str_value) > max_length:
        result.add_error(field_name, f'Maximum {max_length} characters allowed', 'max_length', section)
        return False

    if HTML_TAG_PATTERN.search(str_value):
        result.add_error(field_name, 'HTML tags are not allowed', 'invalid_chars', section)
        return False

    return True


def validate_pattern(value: Any, field_name: str, pattern, message: str,
                     result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate a string against a format pattern."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not pattern.match(str(value).strip()):
        result.add_error(field_name, message, 'format', section)
        return False

    return True


def validate_date(value: Any, field_name: str, result: ValidationResult,
                  required: bool = True, section: str = '', today: Optional[Any] = None) -> bool:
    """Validate a date field (YYYY-MM-DD format) that must not be in the future."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    try:
        parsed_date = parse_iso_date(value)
    except ValueError:
        result.add_error(field_name, 'Please enter a valid date (YYYY-MM-DD)', 'format', section)
        return False

    reference = parse_iso_date(today) if today is not None else get_rules().today()
    if parsed_date > reference:
        result.add_error(field_name, 'Date cannot be in the future', 'future_date', section)
        return False

    return True


def validate_enum(value: Any, field_name: str, allowed: List[str],
                  result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate an enum field with strict matching."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if value not in allowed:
        result.add_error(field_name, f'Must be one of: {", ".join(allowed)}', 'enum', section)
        return False

    return True


def validate_code(value: Any, field_name: str, service: Optional[StaticLookupService],
                  result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate a lookup code; membership is only checked when a lookup service is given."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not isinstance(value, str):
        result.add_error(field_name, 'Must be text', 'type', section)
        return False

    if service is not None and not service.has_id(value):
        result.add_error(field_name, 'Unknown code', 'unknown_code', section)
        return False

    return True


def _section_value(value: Any, field_name: str, result: ValidationResult) -> Optional[Dict[str, Any]]:
    """Unwrap an object section, or the value of a declared change."""
    if not isinstance(value, dict):
        result.add_error(field_name, 'Must be an object', 'type')
        return None
    if 'has_changed' in value:
        if not validate_boolean(value.get('has_changed'), f'{field_name}.has_changed', result):
            return None
        if value['has_changed'] and value.get('value') is None:
            result.add_error(f'{field_name}.value', 'This field is required', 'required')
            return None
        inner = value.get('value')
        if inner is not None and not isinstance(inner, dict):
            result.add_error(f'{field_name}.value', 'Must be an object', 'type')
            return None
        return inner
    return value


def validate_patch(patch: Any, today: Optional[Any] = None,
                   lookups: Optional[ReviewLookups] = None) -> ValidationResult:
    """
    Check the leaf formats of a state patch.

    Only fields present in the patch with a non-null value are checked; null
    clears a field and is always accepted.

    Args:
        patch: Raw patch from the request body
        today: Reference day for date checks
        lookups: Lookup services for code fields (defaults to the bundled
            tables)

    Returns:
        ValidationResult with all errors found
    """
    result = ValidationResult()
    lookups = lookups or DEFAULT_LOOKUPS

    if not isinstance(patch, dict):
        result.add_error('_root', 'Patch must be an object', 'type')
        return result

    def present(key):
        return patch.get(key) is not None

    if present('type_of_application'):
        validate_enum(patch['type_of_application'], 'type_of_application', TYPES_OF_APPLICATION, result)
    if present('context'):
        validate_enum(patch['context'], 'context', APPLICATION_CONTEXTS, result)

    for name in BOOLEAN_FIELDS:
        if present(name):
            validate_boolean(patch[name], name, result)

    if present('date_of_birth'):
        validate_date(patch['date_of_birth'], 'date_of_birth', result, section='applicant', today=today)

    if present('marital_status'):
        validate_code(patch['marital_status'], 'marital_status', lookups.marital_statuses, result,
                      section='applicant')

    if present('email'):
        validate_pattern(patch['email'], 'email', EMAIL_PATTERN,
                         'Please enter a valid email address', result, section='contact')

    if present('applicant_information'):
        applicant = _section_value(patch['applicant_information'], 'applicant_information', result)
        if applicant is not None:
            _validate_person(applicant, 'applicant_information', result)

    if present('partner_information'):
        partner = _section_value(patch['partner_information'], 'partner_information', result)
        if partner is not None:
            validate_boolean(partner.get('confirm'), 'partner_information.confirm', result, section='partner')
            validate_pattern(partner.get('year_of_birth'), 'partner_information.year_of_birth', YEAR_PATTERN,
                             'Please enter a valid year', result, section='partner')
            validate_pattern(partner.get('social_insurance_number'), 'partner_information.social_insurance_number',
                             SIN_PATTERN, 'Please enter a valid social insurance number', result,
                             section='partner')

    if present('contact_information'):
        contact = _section_value(patch['contact_information'], 'contact_information', result)
        if contact is not None:
            for key in ('phone_number', 'phone_number_alt'):
                validate_pattern(contact.get(key), f'contact_information.{key}', PHONE_PATTERN,
                                 'Please enter a valid phone number', result, required=False, section='contact')
            validate_pattern(contact.get('email'), 'contact_information.email', EMAIL_PATTERN,
                             'Please enter a valid email address', result, required=False, section='contact')

    if present('phone_number'):
        phone = _section_value(patch['phone_number'], 'phone_number', result)
        if phone is not None:
            validate_pattern(phone.get('primary'), 'phone_number.primary', PHONE_PATTERN,
                             'Please enter a valid phone number', result, section='contact')
            validate_pattern(phone.get('alternate'), 'phone_number.alternate', PHONE_PATTERN,
                             'Please enter a valid phone number', result, required=False, section='contact')

    for name in ('mailing_address', 'home_address'):
        if present(name):
            address = _section_value(patch[name], name, result)
            if address is not None:
                for key in ('address', 'city', 'country'):
                    validate_string(address.get(key), f'{name}.{key}', result, max_length=200, section='contact')

    if present('communication_preferences'):
        preferences = _section_value(patch['communication_preferences'], 'communication_preferences', result)
        if preferences is not None:
            validate_code(preferences.get('preferred_language'), 'communication_preferences.preferred_language',
                          lookups.preferred_languages, result, section='communication')
            validate_code(preferences.get('preferred_method'), 'communication_preferences.preferred_method',
                          lookups.communication_methods, result, section='communication')
            validate_code(preferences.get('preferred_notification_method'),
                          'communication_preferences.preferred_notification_method',
                          lookups.communication_methods, result, required=False, section='communication')

    if present('dental_benefits'):
        _validate_dental_benefits(patch['dental_benefits'], 'dental_benefits', lookups, result)

    if present('children'):
        if not isinstance(patch['children'], list):
            result.add_error('children', 'Must be a list', 'type', 'children')
        else:
            for i, child in enumerate(patch['children']):
                _validate_child(child, f'children[{i}]', result, today, lookups)

    return result


def _validate_dental_benefits(value: Any, prefix: str, lookups: ReviewLookups, result: ValidationResult,
                              section: str = 'dental'):
    benefits = _section_value(value, prefix, result)
    if benefits is None:
        return
    validate_code(benefits.get('federal_social_program'), f'{prefix}.federal_social_program',
                  lookups.federal_programs, result, required=False, section=section)
    validate_code(benefits.get('province'), f'{prefix}.province',
                  lookups.provinces, result, required=False, section=section)
    validate_code(benefits.get('provincial_territorial_social_program'),
                  f'{prefix}.provincial_territorial_social_program',
                  lookups.provincial_programs, result, required=False, section=section)


def _validate_person(person: Dict[str, Any], prefix: str, result: ValidationResult):
    validate_string(person.get('first_name'), f'{prefix}.first_name', result, section='applicant')
    validate_string(person.get('last_name'), f'{prefix}.last_name', result, section='applicant')
    validate_pattern(person.get('social_insurance_number'), f'{prefix}.social_insurance_number', SIN_PATTERN,
                     'Please enter a valid social insurance number', result, section='applicant')


def _validate_child(child: Any, prefix: str, result: ValidationResult, today: Optional[Any],
                    lookups: ReviewLookups):
    if not isinstance(child, dict):
        result.add_error(prefix, 'Must be an object', 'type', 'children')
        return

    validate_string(child.get('id'), f'{prefix}.id', result, section='children')

    information = child.get('information')
    if information is not None:
        if not isinstance(information, dict):
            result.add_error(f'{prefix}.information', 'Must be an object', 'type', 'children')
            return
        validate_string(information.get('first_name'), f'{prefix}.information.first_name', result,
                        section='children')
        validate_string(information.get('last_name'), f'{prefix}.information.last_name', result,
                        section='children')
        validate_boolean(information.get('is_parent'), f'{prefix}.information.is_parent', result,
                         section='children')
        # An empty date of birth is stored and treated as an incomplete section
        if information.get('date_of_birth'):
            validate_date(information['date_of_birth'], f'{prefix}.information.date_of_birth', result,
                          section='children', today=today)

    if child.get('dental_insurance') is not None:
        validate_boolean(child['dental_insurance'], f'{prefix}.dental_insurance', result, section='children')

    if child.get('dental_benefits') is not None:
        _validate_dental_benefits(child['dental_benefits'], f'{prefix}.dental_benefits', lookups, result,
                                  section='children')
