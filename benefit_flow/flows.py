"""
Flow Registry

Ordered prerequisite tables for every flow variant. The tables are data: the
validator walks them without knowing which flow it is validating, and adding
a variant means adding a table here.

Step ids are canonical path templates; '{id}' is the application id and
'{child_id}' the child id of a scoped child check.

Registered Flows:
=================
Public apply (apply/{id}):
- apply-adult, apply-child, apply-adult-child

Public renew (renew/{id}):
- renew-adult, renew-child, renew-adult-child
  (sections are DeclaredChange values)

Protected application (protected/application/{id}):
- protected-intake-adult, protected-intake-children, protected-intake-family
- protected-renewal-adult, protected-renewal-children, protected-renewal-family
"""

from typing import Dict, Tuple

from benefit_flow.child_validation import (
    ChildCheck,
    has_dental_benefits,
    has_dental_benefits_answer,
    has_dental_insurance,
    has_information,
    is_eligible_age,
    is_parent_or_guardian,
)
from benefit_flow.derivations import (
    AgeCategory,
    is_address_section_completed,
    is_contact_information_section_completed,
    is_declared_change_completed,
    is_dental_benefits_section_completed,
    is_marital_status_collected,
    is_marital_status_section_completed,
    is_phone_number_section_completed,
    requires_verified_email,
)
from benefit_flow.flow_validation import ChildrenPrerequisite, FlowDefinition, Prerequisite, UnknownFlowError


CHILDREN = AgeCategory.CHILDREN
YOUTH = AgeCategory.YOUTH
ADULTS = AgeCategory.ADULTS
SENIORS = AgeCategory.SENIORS

APPLY_BASE = 'apply/{id}'
RENEW_BASE = 'renew/{id}'
PROTECTED_BASE = 'protected/application/{id}'


# Shared predicates

def _partner_provided(c) -> bool:
    return not (is_marital_status_collected(c.state) and c.has_partner and c.state.partner_information is None)


def _partner_cleared(c) -> bool:
    return not (is_marital_status_collected(c.state) and not c.has_partner and c.state.partner_information is not None)


def _email_verified(c) -> bool:
    if not requires_verified_email(c.state.communication_preferences, c.rules):
        return True
    return bool(c.state.email) and c.state.email_verified is True


def _not_category(category, condition=lambda c: True):
    """Satisfied unless the applicant is in the category and the condition holds."""
    def is_satisfied(c):
        return not (c.age_category == category and condition(c))
    return is_satisfied


# Child check chains

def apply_child_checks(prefix: str) -> Tuple[ChildCheck, ...]:
    """Intake chain; prefix is the child's step path ending in '{child_id}'."""
    return (
        ChildCheck('child_information', has_information, f'{prefix}/information'),
        ChildCheck('child_parent_or_guardian', is_parent_or_guardian, f'{prefix}/parent-or-guardian'),
        ChildCheck('child_age', is_eligible_age, f'{prefix}/cannot-apply-child'),
        ChildCheck('child_dental_insurance', has_dental_insurance, f'{prefix}/dental-insurance'),
        ChildCheck('child_dental_benefits', has_dental_benefits,
                   f'{prefix}/confirm-federal-provincial-territorial-benefits'),
    )


def renewal_child_checks(prefix: str) -> Tuple[ChildCheck, ...]:
    return (
        ChildCheck('child_information', has_information, f'{prefix}/information'),
        ChildCheck('child_parent_or_guardian', is_parent_or_guardian, f'{prefix}/parent-or-guardian'),
        ChildCheck('child_dental_insurance', has_dental_insurance, f'{prefix}/dental-insurance'),
        ChildCheck('child_dental_benefits', has_dental_benefits_answer,
                   f'{prefix}/confirm-federal-provincial-territorial-benefits'),
        ChildCheck('child_dental_benefits_update', has_dental_benefits,
                   f'{prefix}/update-federal-provincial-territorial-benefits'),
    )


def protected_child_checks(children_step: str) -> Tuple[ChildCheck, ...]:
    """Protected flows review every child on one page, so checks are not scoped."""
    return (
        ChildCheck('child_information', has_information, children_step, scoped=False),
        ChildCheck('child_parent_or_guardian', is_parent_or_guardian, children_step, scoped=False),
        ChildCheck('child_age', is_eligible_age, f'{PROTECTED_BASE}/type-of-application', scoped=False),
        ChildCheck('child_dental_insurance', has_dental_insurance, children_step, scoped=False),
        ChildCheck('child_dental_benefits', has_dental_benefits, children_step, scoped=False),
    )


# Public apply

def _apply_prefix(type_of_application: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('type_of_application', lambda c: c.state.type_of_application is not None,
                     f'{APPLY_BASE}/type-application'),
        Prerequisite('not_delegate', lambda c: c.state.type_of_application != 'delegate',
                     f'{APPLY_BASE}/application-delegate'),
        Prerequisite('type_matches', lambda c: c.state.type_of_application == type_of_application,
                     f'{APPLY_BASE}/type-application'),
        Prerequisite('tax_filing', lambda c: c.state.tax_filing is not None, f'{APPLY_BASE}/tax-filing'),
        Prerequisite('filed_taxes', lambda c: c.state.tax_filing is not False, f'{APPLY_BASE}/file-taxes'),
    )


def _apply_applicant(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('applicant_information',
                     lambda c: c.state.applicant_information is not None and c.state.marital_status is not None,
                     f'{step}/applicant-information'),
        Prerequisite('partner_information', _partner_provided, f'{step}/partner-information'),
        Prerequisite('partner_information_cleared', _partner_cleared, f'{step}/applicant-information'),
        Prerequisite('contact_information', lambda c: is_contact_information_section_completed(c.state),
                     f'{step}/contact-information'),
        Prerequisite('communication_preferences', lambda c: c.state.communication_preferences is not None,
                     f'{step}/communication-preference'),
    )


def _apply_dental(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('dental_insurance', lambda c: c.state.dental_insurance is not None,
                     f'{step}/dental-insurance'),
        Prerequisite('dental_benefits', lambda c: is_dental_benefits_section_completed(c.state),
                     f'{step}/confirm-federal-provincial-territorial-benefits'),
    )


def _apply_flow(flow_id: str, type_of_application: str, segment: str, prerequisites,
                required_fields, has_children: bool) -> FlowDefinition:
    step = f'{APPLY_BASE}/{segment}'
    return FlowDefinition(
        id=flow_id,
        type_of_application=type_of_application,
        context=None,
        prerequisites=_apply_prefix(type_of_application) + prerequisites,
        review_step=f'{step}/review-information',
        confirmation_step=f'{step}/confirmation',
        entry_step=f'{APPLY_BASE}/terms-and-conditions',
        type_step=f'{APPLY_BASE}/type-application',
        children_index_step=f'{step}/children/index' if has_children else None,
        required_fields=required_fields,
    )


APPLICANT_FIELDS = (
    'applicant_information',
    'date_of_birth',
    'marital_status',
    'contact_information',
    'communication_preferences',
)


def _build_apply_adult() -> FlowDefinition:
    step = f'{APPLY_BASE}/adult'
    prerequisites = (
        Prerequisite('date_of_birth', lambda c: c.state.date_of_birth is not None, f'{step}/date-of-birth'),
        Prerequisite('applicant_age', _not_category(CHILDREN), f'{step}/parent-or-guardian'),
        Prerequisite('living_independently',
                     _not_category(YOUTH, lambda c: c.state.living_independently is None),
                     f'{step}/living-independently'),
        Prerequisite('youth_living_independently',
                     _not_category(YOUTH, lambda c: c.state.living_independently is False),
                     f'{step}/parent-or-guardian'),
        Prerequisite('disability_tax_credit',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is None),
                     f'{step}/disability-tax-credit'),
        Prerequisite('adult_eligibility',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is False),
                     f'{step}/dob-eligibility'),
    ) + _apply_applicant(step) + _apply_dental(step)

    return _apply_flow('apply-adult', 'adult', 'adult', prerequisites,
                       APPLICANT_FIELDS + ('dental_insurance', 'dental_benefits'), has_children=False)


def _build_apply_child() -> FlowDefinition:
    step = f'{APPLY_BASE}/child'
    prerequisites = (
        ChildrenPrerequisite('children', apply_child_checks(f'{step}/children/{{child_id}}'),
                             empty_target_step=f'{step}/children/index'),
        Prerequisite('applicant_information',
                     lambda c: c.state.applicant_information is not None and c.state.date_of_birth is not None,
                     f'{step}/applicant-information'),
        Prerequisite('applicant_age', _not_category(CHILDREN), f'{step}/contact-apply-child'),
        Prerequisite('marital_status', lambda c: c.state.marital_status is not None,
                     f'{step}/applicant-information'),
        Prerequisite('partner_information', _partner_provided, f'{step}/partner-information'),
        Prerequisite('partner_information_cleared', _partner_cleared, f'{step}/applicant-information'),
        Prerequisite('contact_information', lambda c: is_contact_information_section_completed(c.state),
                     f'{step}/contact-information'),
        Prerequisite('communication_preferences', lambda c: c.state.communication_preferences is not None,
                     f'{step}/communication-preference'),
    )

    return _apply_flow('apply-child', 'child', 'child', prerequisites,
                       APPLICANT_FIELDS + ('children',), has_children=True)


def _build_apply_adult_child() -> FlowDefinition:
    step = f'{APPLY_BASE}/adult-child'

    def all_under_18(c):
        return c.state.all_children_under_18 is True

    def some_over_18(c):
        return c.state.all_children_under_18 is False

    prerequisites = (
        Prerequisite('date_of_birth',
                     lambda c: c.state.date_of_birth is not None and c.state.all_children_under_18 is not None,
                     f'{step}/date-of-birth'),
        Prerequisite('child_applicant_with_children', _not_category(CHILDREN, all_under_18),
                     f'{step}/contact-apply-child'),
        Prerequisite('child_applicant', _not_category(CHILDREN, some_over_18), f'{step}/parent-or-guardian'),
        Prerequisite('youth_applicant', _not_category(YOUTH, some_over_18), f'{step}/parent-or-guardian'),
        Prerequisite('living_independently',
                     _not_category(YOUTH, lambda c: all_under_18(c) and c.state.living_independently is None),
                     f'{step}/living-independently'),
        Prerequisite('disability_tax_credit',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is None),
                     f'{step}/disability-tax-credit'),
        Prerequisite('adult_apply_yourself',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is True and some_over_18(c)),
                     f'{step}/apply-yourself'),
        Prerequisite('adult_apply_children',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is False and all_under_18(c)),
                     f'{step}/apply-children'),
        Prerequisite('adult_eligibility',
                     _not_category(ADULTS, lambda c: c.state.disability_tax_credit is False and some_over_18(c)),
                     f'{step}/dob-eligibility'),
        Prerequisite('senior_apply_yourself', _not_category(SENIORS, some_over_18), f'{step}/apply-yourself'),
    ) + _apply_applicant(step) + _apply_dental(step) + (
        ChildrenPrerequisite('children', apply_child_checks(f'{step}/children/{{child_id}}'),
                             empty_target_step=f'{step}/children/index'),
    )

    return _apply_flow('apply-adult-child', 'adult-child', 'adult-child', prerequisites,
                       APPLICANT_FIELDS + ('dental_insurance', 'dental_benefits', 'children'), has_children=True)


# Public renew

def _renew_prefix(type_of_application: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('type_of_application', lambda c: c.state.type_of_application is not None,
                     f'{RENEW_BASE}/type-renewal'),
        Prerequisite('not_delegate', lambda c: c.state.type_of_application != 'delegate',
                     f'{RENEW_BASE}/renewal-delegate'),
        Prerequisite('type_matches', lambda c: c.state.type_of_application == type_of_application,
                     f'{RENEW_BASE}/type-renewal'),
        Prerequisite('applicant_information',
                     lambda c: (c.state.applicant_information is not None
                                and c.state.client_application is not None
                                and c.state.date_of_birth is not None),
                     f'{RENEW_BASE}/applicant-information'),
    )


def _renew_parent_sections(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('marital_status',
                     lambda c: (c.state.has_marital_status_changed is False
                                or (c.state.has_marital_status_changed is True and c.state.marital_status is not None)),
                     f'{step}/confirm-marital-status'),
        Prerequisite('partner_information', _partner_provided, f'{step}/partner-information'),
        Prerequisite('partner_information_cleared', _partner_cleared, f'{step}/confirm-marital-status'),
        Prerequisite('mailing_address', lambda c: c.state.mailing_address is not None, f'{step}/confirm-address'),
        Prerequisite('mailing_address_update', lambda c: is_declared_change_completed(c.state.mailing_address),
                     f'{step}/update-mailing-address'),
        Prerequisite('home_address', lambda c: is_address_section_completed(c.state),
                     f'{step}/update-home-address'),
        Prerequisite('phone_number', lambda c: is_phone_number_section_completed(c.state),
                     f'{step}/confirm-phone'),
        Prerequisite('communication_preferences',
                     lambda c: is_declared_change_completed(c.state.communication_preferences),
                     f'{step}/confirm-communication-preference'),
    )


def _renew_dental(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('dental_insurance', lambda c: c.state.dental_insurance is not None,
                     f'{step}/dental-insurance'),
        Prerequisite('dental_benefits', lambda c: c.state.dental_benefits is not None,
                     f'{step}/confirm-federal-provincial-territorial-benefits'),
        Prerequisite('dental_benefits_update', lambda c: is_dental_benefits_section_completed(c.state),
                     f'{step}/update-federal-provincial-territorial-benefits'),
    )


RENEW_PARENT_FIELDS = (
    'applicant_information',
    'client_application',
    'date_of_birth',
    'has_marital_status_changed',
    'mailing_address',
    'phone_number',
    'communication_preferences',
)


def _renew_flow(flow_id: str, type_of_application: str, prerequisites, required_fields,
                has_children: bool) -> FlowDefinition:
    step = f'{RENEW_BASE}/{type_of_application}'
    return FlowDefinition(
        id=flow_id,
        type_of_application=type_of_application,
        context=None,
        prerequisites=_renew_prefix(type_of_application) + prerequisites,
        review_step=f'{step}/review-information',
        confirmation_step=f'{step}/confirmation',
        entry_step=f'{RENEW_BASE}/terms-and-conditions',
        type_step=f'{RENEW_BASE}/type-renewal',
        children_index_step=f'{step}/children/index' if has_children else None,
        required_fields=required_fields,
    )


def _build_renew_adult() -> FlowDefinition:
    step = f'{RENEW_BASE}/adult'
    return _renew_flow('renew-adult', 'adult', _renew_parent_sections(step) + _renew_dental(step),
                       RENEW_PARENT_FIELDS + ('dental_insurance', 'dental_benefits'), has_children=False)


def _build_renew_adult_child() -> FlowDefinition:
    step = f'{RENEW_BASE}/adult-child'
    prerequisites = _renew_parent_sections(step) + _renew_dental(step) + (
        ChildrenPrerequisite('children', renewal_child_checks(f'{step}/children/{{child_id}}')),
    )
    return _renew_flow('renew-adult-child', 'adult-child', prerequisites,
                       RENEW_PARENT_FIELDS + ('dental_insurance', 'dental_benefits'), has_children=True)


def _build_renew_child() -> FlowDefinition:
    step = f'{RENEW_BASE}/child'
    prerequisites = (
        ChildrenPrerequisite('children', renewal_child_checks(f'{step}/children/{{child_id}}'),
                             empty_target_step=f'{step}/children/index'),
    ) + _renew_parent_sections(step)
    return _renew_flow('renew-child', 'child', prerequisites,
                       RENEW_PARENT_FIELDS + ('children',), has_children=True)


# Protected application

def _protected_prefix(context: str, type_of_application: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('terms_and_conditions', lambda c: c.state.terms_and_conditions is not None,
                     f'{PROTECTED_BASE}/eligibility-requirements'),
        Prerequisite('type_of_application',
                     lambda c: c.state.type_of_application is not None and c.state.context is not None,
                     f'{PROTECTED_BASE}/type-of-application'),
        Prerequisite('not_delegate', lambda c: c.state.type_of_application != 'delegate',
                     f'{PROTECTED_BASE}/application-delegate'),
        Prerequisite('type_matches',
                     lambda c: c.state.type_of_application == type_of_application and c.state.context == context,
                     f'{PROTECTED_BASE}/type-of-application'),
        Prerequisite('tax_filing', lambda c: c.state.tax_filing is True,
                     f'{PROTECTED_BASE}/eligibility-requirements'),
        Prerequisite('client_application',
                     lambda c: c.state.context != 'renewal' or c.state.client_application is not None,
                     f'{PROTECTED_BASE}/eligibility-requirements'),
        Prerequisite('applicant_information',
                     lambda c: c.state.applicant_information is not None and c.state.date_of_birth is not None,
                     f'{PROTECTED_BASE}/type-of-application'),
        Prerequisite('applicant_age', _not_category(CHILDREN), f'{PROTECTED_BASE}/type-of-application'),
    )


def _protected_marital_status(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('marital_status', lambda c: is_marital_status_section_completed(c.state, c.rules), step),
        Prerequisite('partner_information_cleared', _partner_cleared, step),
    )


def _protected_contact(step: str, email_step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('phone_number', lambda c: is_phone_number_section_completed(c.state), step),
        Prerequisite('address', lambda c: is_address_section_completed(c.state), step),
        Prerequisite('communication_preferences',
                     lambda c: is_declared_change_completed(c.state.communication_preferences), step),
        Prerequisite('email_verified', _email_verified, email_step),
    )


def _protected_dental(step: str) -> Tuple[Prerequisite, ...]:
    return (
        Prerequisite('dental_insurance', lambda c: c.state.dental_insurance is not None, step),
        Prerequisite('dental_benefits', lambda c: is_dental_benefits_section_completed(c.state), step),
    )


PROTECTED_PARENT_FIELDS = (
    'terms_and_conditions',
    'applicant_information',
    'date_of_birth',
    'phone_number',
    'mailing_address',
    'communication_preferences',
)


def _build_protected(context: str, type_of_application: str) -> FlowDefinition:
    segment = f'{context}-{type_of_application}'
    step = f'{PROTECTED_BASE}/{segment}'
    children = ChildrenPrerequisite(
        'children',
        protected_child_checks(f'{step}/childrens-application'),
        empty_target_step=f'{step}/childrens-application'
    )

    if type_of_application == 'children':
        prerequisites = (children,) + \
            _protected_marital_status(f'{step}/parent-or-guardian') + \
            _protected_contact(f'{step}/parent-or-guardian', f'{step}/contact-information')
        required_fields = PROTECTED_PARENT_FIELDS + ('children',)
    else:
        prerequisites = _protected_marital_status(f'{step}/marital-status') + \
            _protected_contact(f'{step}/contact-information', f'{step}/contact-information') + \
            _protected_dental(f'{step}/dental-insurance')
        required_fields = PROTECTED_PARENT_FIELDS + ('dental_insurance', 'dental_benefits')
        if type_of_application == 'family':
            prerequisites = prerequisites + (children,)
            required_fields = required_fields + ('children',)

    return FlowDefinition(
        id=f'protected-{segment}',
        type_of_application=type_of_application,
        context=context,
        prerequisites=_protected_prefix(context, type_of_application) + prerequisites,
        review_step=f'{step}/review-and-submit',
        confirmation_step=f'{step}/confirmation',
        entry_step=f'{PROTECTED_BASE}/eligibility-requirements',
        type_step=f'{PROTECTED_BASE}/type-of-application',
        children_index_step=f'{step}/children/index' if type_of_application != 'adult' else None,
        required_fields=required_fields,
    )


def _build_registry() -> Dict[str, FlowDefinition]:
    flows = [
        _build_apply_adult(),
        _build_apply_child(),
        _build_apply_adult_child(),
        _build_renew_adult(),
        _build_renew_child(),
        _build_renew_adult_child(),
    ]
    for context in ('intake', 'renewal'):
        for type_of_application in ('adult', 'children', 'family'):
            flows.append(_build_protected(context, type_of_application))
    return {flow.id: flow for flow in flows}


FLOW_REGISTRY: Dict[str, FlowDefinition] = _build_registry()


def get_flow(flow_id: str) -> FlowDefinition:
    """
    Get a registered flow.

    Raises:
        UnknownFlowError: If no flow is registered under the id
    """
    try:
        return FLOW_REGISTRY[flow_id]
    except KeyError:
        raise UnknownFlowError(flow_id)
