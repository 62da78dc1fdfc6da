"""
Derivation Functions

Derived values computed from stored state primitives. These are never
persisted; every validation pass recomputes them.

Age Categories:
===============
- children: age < youth_min
- youth: youth_min <= age < adults_min
- adults: adults_min <= age < seniors_min
- seniors: age >= seniors_min

A birthday falling on the reference day counts as reached.

Section Completion:
===================
A section is completed when its required leaf values are present. Renewal
sections stored as a DeclaredChange count as completed when marked not
changed, without requiring the nested value.

Date strings must be pre-validated by the caller; malformed or future dates
raise ValueError.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from benefit_flow.application_state import ApplicationState, ChildRecord, DeclaredChange, PartnerInformation
from benefit_flow.eligibility_rules import EligibilityRules, get_rules
from benefit_flow.utils import get_age_from_date_string, parse_iso_date


class AgeCategory(str, Enum):
    """Applicant and child age buckets."""
    CHILDREN = 'children'
    YOUTH = 'youth'
    ADULTS = 'adults'
    SENIORS = 'seniors'


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    start_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'eligible': self.eligible}
        if self.start_date:
            result['start_date'] = self.start_date
        return result


def get_age_category_from_age(age: int, rules: Optional[EligibilityRules] = None) -> AgeCategory:
    """
    Bucket an age into its category.

    Args:
        age: Age in completed years
        rules: Eligibility rules (defaults to the current application's)

    Returns:
        AgeCategory

    Raises:
        ValueError: If the age is negative
    """
    if age < 0:
        raise ValueError(f'Invalid age [{age}]')

    buckets = (rules or get_rules()).age_buckets
    if age >= buckets.seniors_min:
        return AgeCategory.SENIORS
    if age >= buckets.adults_min:
        return AgeCategory.ADULTS
    if age >= buckets.youth_min:
        return AgeCategory.YOUTH
    return AgeCategory.CHILDREN


def get_age_category_from_date_string(date_string: str, reference_date: Optional[Any] = None,
                                      rules: Optional[EligibilityRules] = None) -> AgeCategory:
    """
    Get the age category for a date of birth.

    Args:
        date_string: Date of birth (YYYY-MM-DD)
        reference_date: Day to compute the age at (defaults to the rules' today)
        rules: Eligibility rules (defaults to the current application's)

    Returns:
        AgeCategory
    """
    rules = rules or get_rules()
    reference = reference_date if reference_date is not None else rules.today()
    return get_age_category_from_age(get_age_from_date_string(date_string, reference), rules)


def applicant_information_state_has_partner(marital_status: Optional[str],
                                            rules: Optional[EligibilityRules] = None) -> bool:
    """True only for marital status codes meaning married or common-law."""
    if not marital_status:
        return False
    return marital_status in (rules or get_rules()).partner_marital_statuses


def get_declared_change_value_or_client_value(declared: Any, client_value: Any = None) -> Any:
    """
    Resolve the effective value of a renewal section.

    A changed section yields its new value; an unchanged one falls back to the
    client's existing value. Plain records are returned as-is and an undefined
    section yields None.
    """
    if declared is None:
        return None
    if isinstance(declared, DeclaredChange):
        return declared.value if declared.has_changed else client_value
    return declared


def effective_marital_status(state: ApplicationState) -> Optional[str]:
    """Marital status declared in this session, or the client's when unchanged."""
    if state.marital_status:
        return state.marital_status
    if state.has_marital_status_changed is False or should_skip_marital_status(state):
        return (state.client_application or {}).get('marital_status')
    return None


def should_skip_marital_status(state: ApplicationState) -> bool:
    """Renewals with a copay tier earning record do not collect marital status."""
    if state.context != 'renewal' or state.client_application is None:
        return False
    return state.client_application.get('copay_tier_earning_record') is True


def is_marital_status_collected(state: ApplicationState) -> bool:
    """Whether this session declares the marital status (and so partner data)."""
    return state.has_marital_status_changed is not False and not should_skip_marital_status(state)


def effective_partner_information(state: ApplicationState, has_partner: bool) -> Optional[PartnerInformation]:
    """
    Partner data shown at review.

    Declared in this session when the marital status is collected. Otherwise
    the client's partner record is used, and only while the client has a
    partner.
    """
    if is_marital_status_collected(state):
        return state.partner_information
    if not has_partner:
        return None
    client_partner = (state.client_application or {}).get('partner_information')
    if client_partner is None:
        return None
    return PartnerInformation.from_dict(client_partner)


def requires_verified_email(preferences: Any, rules: Optional[EligibilityRules] = None) -> bool:
    """True when the preferred method or notification method is an email method."""
    value = get_declared_change_value_or_client_value(preferences)
    if value is None:
        return False
    methods = (rules or get_rules()).email_communication_methods
    return value.preferred_method in methods or value.preferred_notification_method in methods


def is_new_child_state(child: ChildRecord) -> bool:
    """A child is new until every one of its sections has been filled."""
    return child.information is None or child.dental_insurance is None or child.dental_benefits is None


def get_eligibility_by_age(date_of_birth: str, rules: Optional[EligibilityRules] = None) -> EligibilityResult:
    """
    Check age-based eligibility windows.

    An applicant whose age falls in a configured window is only eligible from
    that window's start date. Ages outside every window are eligible.

    Args:
        date_of_birth: Date of birth (YYYY-MM-DD)
        rules: Eligibility rules (defaults to the current application's)

    Returns:
        EligibilityResult
    """
    rules = rules or get_rules()
    today = rules.today()
    age = get_age_from_date_string(date_of_birth, today)

    for window in rules.eligibility_windows:
        if window.min_age <= age <= window.max_age:
            if today < parse_iso_date(window.start_date):
                return EligibilityResult(eligible=False, start_date=window.start_date)
            return EligibilityResult(eligible=True)

    return EligibilityResult(eligible=True)


def is_declared_change_completed(value: Any) -> bool:
    """
    Check a section that may hold a DeclaredChange.

    Returns:
        False when undefined or changed without a value, True otherwise
    """
    if value is None:
        return False
    if isinstance(value, DeclaredChange):
        return not value.has_changed or value.value is not None
    return True


def is_applicant_information_section_completed(state: ApplicationState) -> bool:
    return state.applicant_information is not None


def is_marital_status_section_completed(state: ApplicationState,
                                        rules: Optional[EligibilityRules] = None) -> bool:
    """Marital status is answered and partner data matches it."""
    if not is_marital_status_collected(state):
        return True
    if not state.marital_status:
        return False
    if applicant_information_state_has_partner(state.marital_status, rules):
        return state.partner_information is not None
    return True


def is_phone_number_section_completed(state: ApplicationState) -> bool:
    return is_declared_change_completed(state.phone_number)


def is_address_section_completed(state: ApplicationState) -> bool:
    """Mailing address is completed and the home address is known."""
    if not is_declared_change_completed(state.mailing_address):
        return False
    if state.is_home_address_same_as_mailing_address is True:
        return True
    if is_declared_change_completed(state.home_address):
        return True
    return isinstance(state.mailing_address, DeclaredChange) and not state.mailing_address.has_changed


def is_contact_information_section_completed(state: ApplicationState) -> bool:
    return state.contact_information is not None and is_declared_change_completed(state.mailing_address)


def is_communication_preferences_section_completed(state: ApplicationState,
                                                   rules: Optional[EligibilityRules] = None) -> bool:
    """Preferences are set, with a verified email when an email method is chosen."""
    preferences = state.communication_preferences
    if not is_declared_change_completed(preferences):
        return False
    if requires_verified_email(preferences, rules):
        return bool(state.email) and state.email_verified is True
    return True


def is_dental_insurance_section_completed(state: ApplicationState) -> bool:
    return state.dental_insurance is not None


def is_dental_benefits_section_completed(state: ApplicationState) -> bool:
    return is_declared_change_completed(state.dental_benefits)


def is_child_information_section_completed(child: ChildRecord) -> bool:
    # An empty date of birth is left by a cleared date field
    return child.information is not None and bool(child.information.date_of_birth)


def is_child_dental_insurance_section_completed(child: ChildRecord) -> bool:
    return child.dental_insurance is not None


def is_child_dental_benefits_section_completed(child: ChildRecord) -> bool:
    return is_declared_change_completed(child.dental_benefits)


def get_section_statuses(state: ApplicationState, rules: Optional[EligibilityRules] = None) -> Dict[str, bool]:
    """
    Get the completion flag of every applicant section.

    Args:
        state: Application state
        rules: Eligibility rules (defaults to the current application's)

    Returns:
        Dictionary mapping section name to completion
    """
    return {
        'applicant_information': is_applicant_information_section_completed(state),
        'marital_status': is_marital_status_section_completed(state, rules),
        'phone_number': is_phone_number_section_completed(state),
        'address': is_address_section_completed(state),
        'contact_information': is_contact_information_section_completed(state),
        'communication_preferences': is_communication_preferences_section_completed(state, rules),
        'dental_insurance': is_dental_insurance_section_completed(state),
        'dental_benefits': is_dental_benefits_section_completed(state),
        'children': all(not is_new_child_state(child) for child in state.children),
    }
