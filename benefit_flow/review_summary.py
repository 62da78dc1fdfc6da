"""
Review Summary Module

Builds the display-ready review of a validated application. Lookup codes
(marital status, languages, communication methods, provinces and benefit
programs) are resolved to names here. Patch validation rejects unknown codes
before they are stored; the flow validators never read lookups.

Renewal sections marked unchanged are shown with the client's existing values.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from benefit_flow.application_state import ReviewState
from benefit_flow.derivations import get_declared_change_value_or_client_value


class UnknownCodeError(LookupError):
    """A stored code is missing from its lookup table."""

    def __init__(self, lookup: str, code: str):
        self.lookup = lookup
        self.code = code
        super().__init__(f'Unknown {lookup} id [{code}]')


class StaticLookupService:
    """Read-only code to localized name lookup."""

    def __init__(self, name: str, entries: Mapping[str, Mapping[str, str]]):
        self.name = name
        self._entries = dict(entries)

    def has_id(self, id: str) -> bool:
        return id in self._entries

    def get_name_by_id(self, id: str, locale: str = 'en') -> str:
        """
        Get the localized name of a code.

        Falls back to the English name when the locale has none.

        Raises:
            UnknownCodeError: If the code is unknown
        """
        entry = self._entries.get(id)
        if entry is None:
            raise UnknownCodeError(self.name, id)
        return entry.get(locale) or entry['en']


DEFAULT_LOOKUP_DATA = {
    'marital_statuses': {
        'single': {'en': 'Single', 'fr': 'Célibataire'},
        'married': {'en': 'Married', 'fr': 'Marié(e)'},
        'commonlaw': {'en': 'Common-law', 'fr': 'Conjoint(e) de fait'},
        'separated': {'en': 'Separated', 'fr': 'Séparé(e)'},
        'divorced': {'en': 'Divorced', 'fr': 'Divorcé(e)'},
        'widowed': {'en': 'Widowed', 'fr': 'Veuf ou veuve'},
    },
    'preferred_languages': {
        'en': {'en': 'English', 'fr': 'Anglais'},
        'fr': {'en': 'French', 'fr': 'Français'},
    },
    'communication_methods': {
        'email': {'en': 'Email', 'fr': 'Courriel'},
        'mail': {'en': 'Mail', 'fr': 'Courrier'},
    },
    'provinces': {
        'AB': {'en': 'Alberta', 'fr': 'Alberta'},
        'BC': {'en': 'British Columbia', 'fr': 'Colombie-Britannique'},
        'MB': {'en': 'Manitoba', 'fr': 'Manitoba'},
        'NB': {'en': 'New Brunswick', 'fr': 'Nouveau-Brunswick'},
        'NL': {'en': 'Newfoundland and Labrador', 'fr': 'Terre-Neuve-et-Labrador'},
        'NS': {'en': 'Nova Scotia', 'fr': 'Nouvelle-Écosse'},
        'NT': {'en': 'Northwest Territories', 'fr': 'Territoires du Nord-Ouest'},
        'NU': {'en': 'Nunavut', 'fr': 'Nunavut'},
        'ON': {'en': 'Ontario', 'fr': 'Ontario'},
        'PE': {'en': 'Prince Edward Island', 'fr': 'Île-du-Prince-Édouard'},
        'QC': {'en': 'Quebec', 'fr': 'Québec'},
        'SK': {'en': 'Saskatchewan', 'fr': 'Saskatchewan'},
        'YT': {'en': 'Yukon', 'fr': 'Yukon'},
    },
    'federal_programs': {
        'nihb': {'en': 'Non-Insured Health Benefits Program', 'fr': 'Programme des services de santé non assurés'},
        'ifhp': {'en': 'Interim Federal Health Program', 'fr': 'Programme fédéral de santé intérimaire'},
        'vac': {'en': 'Veterans Affairs Canada', 'fr': 'Anciens Combattants Canada'},
    },
    'provincial_programs': {
        'on-odsp': {'en': 'Ontario Disability Support Program', 'fr': 'Programme ontarien de soutien aux personnes handicapées'},
        'on-ow': {'en': 'Ontario Works', 'fr': 'Ontario au travail'},
        'bc-hap': {'en': 'Healthy Kids Program', 'fr': 'Programme Healthy Kids'},
    },
}


@dataclass(frozen=True)
class ReviewLookups:
    """The lookup services a review summary needs."""
    marital_statuses: StaticLookupService
    preferred_languages: StaticLookupService
    communication_methods: StaticLookupService
    provinces: StaticLookupService
    federal_programs: StaticLookupService
    provincial_programs: StaticLookupService

    @classmethod
    def from_data(cls, data: Optional[Mapping[str, Any]] = None) -> 'ReviewLookups':
        """Build lookups from config data, falling back to the bundled tables."""
        data = data or {}
        services = {}
        for name, default in DEFAULT_LOOKUP_DATA.items():
            services[name] = StaticLookupService(name, data.get(name, default))
        return cls(**services)


DEFAULT_LOOKUPS = ReviewLookups.from_data()


@dataclass
class ReviewItem:
    key: str
    value: Any


@dataclass
class ReviewSection:
    """A section of the review page."""
    title: str
    items: List[ReviewItem] = field(default_factory=list)
    order: int = 0

    def add(self, key: str, value: Any):
        if value is not None:
            self.items.append(ReviewItem(key, value))


@dataclass
class ReviewSummary:
    """Complete display-ready review of an application."""
    application_id: str
    type_of_application: str
    applicant_name: str = ''
    age_category: str = ''
    has_partner: bool = False
    sections: List[ReviewSection] = field(default_factory=list)
    children: List[ReviewSection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary for API response."""
        return {
            'overview': {
                'application_id': self.application_id,
                'type_of_application': self.type_of_application,
                'applicant_name': self.applicant_name,
                'age_category': self.age_category,
                'has_partner': self.has_partner,
            },
            'sections': [
                {'title': s.title, 'items': {i.key: i.value for i in s.items}}
                for s in sorted(self.sections, key=lambda x: x.order)
            ],
            'children': [
                {'title': c.title, 'items': {i.key: i.value for i in c.items}}
                for c in self.children
            ],
        }


def _get(record: Any, key: str) -> Any:
    """Read a value from a record or a raw client dict."""
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(key)
    return getattr(record, key, None)


def _lookup(service: StaticLookupService, code: Optional[str], locale: str) -> Optional[str]:
    if not code:
        return None
    return service.get_name_by_id(code, locale)


def _single_line(address: Any) -> Optional[str]:
    if address is None:
        return None
    if hasattr(address, 'to_single_line'):
        return address.to_single_line()
    parts = [address.get(k) for k in ('address', 'city', 'province', 'postal_code', 'country')]
    return ', '.join(p for p in parts if p)


def build_review_summary(state: ReviewState, lookups: ReviewLookups, locale: str = 'en') -> ReviewSummary:
    """
    Build the review summary of a validated application.

    Args:
        state: Review-ready state from validate_flow_state
        lookups: Lookup services
        locale: Display locale ('en' or 'fr')

    Returns:
        ReviewSummary with applicant, contact, communication and dental
        sections, and one section per child

    Raises:
        LookupError: If a stored code is unknown to its lookup
    """
    client = state.client_application or {}
    applicant = state.applicant_information

    summary = ReviewSummary(
        application_id=state.id,
        type_of_application=state.type_of_application or '',
        applicant_name=f'{applicant.first_name} {applicant.last_name}' if applicant else '',
        age_category=state.age_category.value if state.age_category else '',
        has_partner=state.has_partner,
    )

    summary.sections.append(_build_applicant_section(state, lookups, locale, client))

    if state.has_partner and state.partner_information is not None:
        partner = ReviewSection('partner_information', order=2)
        partner.add('year_of_birth', state.partner_information.year_of_birth)
        partner.add('social_insurance_number', state.partner_information.social_insurance_number)
        summary.sections.append(partner)

    summary.sections.append(_build_contact_section(state, client))
    summary.sections.append(_build_communication_section(state, lookups, locale, client))

    if state.dental_insurance is not None:
        summary.sections.append(
            _build_dental_section('dental', state.dental_insurance, state.dental_benefits,
                                  client.get('dental_benefits'), lookups, locale, order=5)
        )

    for child in state.children:
        information = child.information
        section = ReviewSection(f'{information.first_name} {information.last_name}' if information else child.id)
        if information is not None:
            section.add('date_of_birth', information.date_of_birth)
            section.add('social_insurance_number', information.social_insurance_number)
        age_category = getattr(child, 'age_category', None)
        if age_category is not None:
            section.add('age_category', age_category.value)
        dental = _build_dental_section('dental', child.dental_insurance, child.dental_benefits,
                                       None, lookups, locale)
        section.items.extend(dental.items)
        summary.children.append(section)

    return summary


def _build_applicant_section(state: ReviewState, lookups: ReviewLookups, locale: str,
                             client: Mapping[str, Any]) -> ReviewSection:
    """Build the applicant section."""
    section = ReviewSection('applicant_information', order=1)
    applicant = state.applicant_information
    if applicant is not None:
        section.add('first_name', applicant.first_name)
        section.add('last_name', applicant.last_name)
        section.add('social_insurance_number', applicant.social_insurance_number)
    section.add('date_of_birth', state.date_of_birth)

    marital_status = state.marital_status or client.get('marital_status')
    section.add('marital_status', _lookup(lookups.marital_statuses, marital_status, locale))
    return section


def _build_contact_section(state: ReviewState, client: Mapping[str, Any]) -> ReviewSection:
    """Build the contact section from apply or renewal sections."""
    section = ReviewSection('contact_information', order=3)

    phone = get_declared_change_value_or_client_value(state.phone_number, client.get('phone_number'))
    contact = state.contact_information
    section.add('phone_number', _get(phone, 'primary') or _get(contact, 'phone_number'))
    section.add('phone_number_alt', _get(phone, 'alternate') or _get(contact, 'phone_number_alt'))
    section.add('email', state.email or _get(contact, 'email'))

    mailing = get_declared_change_value_or_client_value(state.mailing_address, client.get('mailing_address'))
    section.add('mailing_address', _single_line(mailing))

    if state.is_home_address_same_as_mailing_address:
        section.add('home_address', _single_line(mailing))
    else:
        home = get_declared_change_value_or_client_value(state.home_address, client.get('home_address'))
        section.add('home_address', _single_line(home))

    return section


def _build_communication_section(state: ReviewState, lookups: ReviewLookups, locale: str,
                                 client: Mapping[str, Any]) -> ReviewSection:
    section = ReviewSection('communication_preferences', order=4)
    preferences = get_declared_change_value_or_client_value(
        state.communication_preferences, client.get('communication_preferences')
    )
    section.add('preferred_language',
                _lookup(lookups.preferred_languages, _get(preferences, 'preferred_language'), locale))
    section.add('preferred_method',
                _lookup(lookups.communication_methods, _get(preferences, 'preferred_method'), locale))
    section.add('preferred_notification_method',
                _lookup(lookups.communication_methods, _get(preferences, 'preferred_notification_method'), locale))
    return section


def _build_dental_section(title: str, dental_insurance: Optional[bool], dental_benefits: Any,
                          client_benefits: Any, lookups: ReviewLookups, locale: str,
                          order: int = 0) -> ReviewSection:
    """Build a dental insurance and benefits section for the applicant or a child."""
    section = ReviewSection(title, order=order)
    section.add('dental_insurance', dental_insurance)

    benefits = get_declared_change_value_or_client_value(dental_benefits, client_benefits)
    if benefits is None:
        return section

    section.add('has_federal_benefits', _get(benefits, 'has_federal_benefits'))
    section.add('federal_social_program',
                _lookup(lookups.federal_programs, _get(benefits, 'federal_social_program'), locale))
    section.add('has_provincial_territorial_benefits', _get(benefits, 'has_provincial_territorial_benefits'))
    section.add('province', _lookup(lookups.provinces, _get(benefits, 'province'), locale))
    section.add('provincial_territorial_social_program',
                _lookup(lookups.provincial_programs, _get(benefits, 'provincial_territorial_social_program'),
                        locale))
    return section
