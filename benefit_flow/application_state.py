"""
Application State Module

Typed records for the session-scoped application state, with dict round-trips
for storage and the pure partial merge used by every page save.

Merge Rules:
============
- Key absent or UNSET: the stored value is left untouched
- None: the field is cleared (children becomes [], edit_mode becomes False)
- Any other value: the field is replaced; dicts are parsed into the field's
  record type
- id, last_updated_on and application_year are owned by the store and cannot
  be patched

Renewal flows store some sections as a DeclaredChange. {has_changed: False}
means "nothing changed since the last application" and carries no value.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union


TYPES_OF_APPLICATION = ['adult', 'child', 'adult-child', 'children', 'family', 'delegate']
APPLICATION_CONTEXTS = ['intake', 'renewal']

IMMUTABLE_FIELDS = frozenset({'id', 'last_updated_on', 'application_year'})


class _Unset:
    """Marker for 'leave this field untouched' in a patch."""

    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


UNSET = _Unset()


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    return value


class Record:
    """Base for state records. Subclasses must be dataclasses."""

    @classmethod
    def field_parsers(cls) -> Dict[str, Callable[[Any], Any]]:
        """Parsers for fields holding nested records."""
        return {}

    @classmethod
    def from_dict(cls, data: Any):
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValueError(f'{cls.__name__} must be an object')

        names = {f.name for f in fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ValueError(f'Unknown {cls.__name__} fields: {", ".join(sorted(unknown))}')

        parsers = cls.field_parsers()
        values = {}
        for key, value in data.items():
            parser = parsers.get(key)
            values[key] = parser(value) if parser and value is not None else value

        try:
            return cls(**values)
        except TypeError as e:
            raise ValueError(f'Invalid {cls.__name__}: {e}')

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dict, omitting undefined (None) fields."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = _serialize(value)
        return result


@dataclass
class DeclaredChange:
    """Renewal answer to 'has this changed?', with the new value when it has."""
    has_changed: bool
    value: Optional[Any] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], value_type) -> 'DeclaredChange':
        if 'has_changed' not in data or not isinstance(data['has_changed'], bool):
            raise ValueError('DeclaredChange requires a boolean has_changed')
        value = data.get('value')
        return cls(
            has_changed=data['has_changed'],
            value=value_type.from_dict(value) if value is not None else None
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {'has_changed': self.has_changed}
        if self.value is not None:
            result['value'] = _serialize(self.value)
        return result


def _record(record_type) -> Callable[[Any], Any]:
    def parse(value):
        return record_type.from_dict(value)
    return parse


def _record_or_declared_change(record_type) -> Callable[[Any], Any]:
    def parse(value):
        if isinstance(value, (DeclaredChange, record_type)):
            return value
        if isinstance(value, Mapping) and 'has_changed' in value:
            return DeclaredChange.from_dict(value, record_type)
        return record_type.from_dict(value)
    return parse


@dataclass
class ApplicationYear(Record):
    application_year_id: str
    tax_year: str
    dependent_eligibility_end_date: Optional[str] = None


@dataclass
class TermsAndConditions(Record):
    acknowledge_terms: bool
    acknowledge_privacy: bool
    share_data: bool = False


@dataclass
class ApplicantInformation(Record):
    first_name: str
    last_name: str
    social_insurance_number: str
    member_id: Optional[str] = None


@dataclass
class PartnerInformation(Record):
    confirm: bool
    year_of_birth: str
    social_insurance_number: str


@dataclass
class Address(Record):
    address: str
    city: str
    country: str
    postal_code: Optional[str] = None
    province: Optional[str] = None

    def to_single_line(self) -> str:
        parts = [p for p in [self.address, self.city, self.province, self.postal_code, self.country] if p]
        return ', '.join(parts)


@dataclass
class ContactInformation(Record):
    phone_number: Optional[str] = None
    phone_number_alt: Optional[str] = None
    email: Optional[str] = None


@dataclass
class PhoneNumber(Record):
    primary: str
    alternate: Optional[str] = None


@dataclass
class CommunicationPreferences(Record):
    preferred_language: str
    preferred_method: str
    preferred_notification_method: Optional[str] = None


@dataclass
class DentalBenefits(Record):
    has_federal_benefits: bool
    federal_social_program: Optional[str] = None
    has_provincial_territorial_benefits: Optional[bool] = None
    provincial_territorial_social_program: Optional[str] = None
    province: Optional[str] = None


@dataclass
class ChildInformation(Record):
    first_name: str
    last_name: str
    date_of_birth: str
    is_parent: bool
    has_social_insurance_number: bool = False
    social_insurance_number: Optional[str] = None
    member_id: Optional[str] = None


@dataclass
class SubmissionInfo(Record):
    confirmation_code: str
    submitted_on: str


@dataclass
class ChildRecord(Record):
    """One dependant's sub-application, owned by its ApplicationState."""
    id: str
    information: Optional[ChildInformation] = None
    dental_insurance: Optional[bool] = None
    dental_benefits: Optional[Union[DentalBenefits, DeclaredChange]] = None

    @classmethod
    def field_parsers(cls):
        return {
            'information': _record(ChildInformation),
            'dental_benefits': _record_or_declared_change(DentalBenefits),
        }


@dataclass
class ReviewChild(ChildRecord):
    """A validated child with its derived age category."""
    age_category: Optional[str] = None


def _children(value: Any) -> List[ChildRecord]:
    if not isinstance(value, list):
        raise ValueError('children must be a list')
    children = [ChildRecord.from_dict(child) for child in value]
    ids = [child.id for child in children]
    if len(set(ids)) != len(ids):
        raise ValueError('Child ids must be unique')
    return children


@dataclass
class ApplicationState(Record):
    """Root aggregate for one application or renewal session."""
    id: str
    edit_mode: bool = False
    last_updated_on: Optional[str] = None
    context: Optional[str] = None
    type_of_application: Optional[str] = None
    application_year: Optional[ApplicationYear] = None
    terms_and_conditions: Optional[TermsAndConditions] = None
    tax_filing: Optional[bool] = None
    date_of_birth: Optional[str] = None
    all_children_under_18: Optional[bool] = None
    living_independently: Optional[bool] = None
    disability_tax_credit: Optional[bool] = None
    applicant_information: Optional[ApplicantInformation] = None
    client_application: Optional[Dict[str, Any]] = None
    has_marital_status_changed: Optional[bool] = None
    marital_status: Optional[str] = None
    partner_information: Optional[PartnerInformation] = None
    contact_information: Optional[ContactInformation] = None
    phone_number: Optional[Union[PhoneNumber, DeclaredChange]] = None
    mailing_address: Optional[Union[Address, DeclaredChange]] = None
    home_address: Optional[Union[Address, DeclaredChange]] = None
    is_home_address_same_as_mailing_address: Optional[bool] = None
    communication_preferences: Optional[Union[CommunicationPreferences, DeclaredChange]] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    dental_insurance: Optional[bool] = None
    dental_benefits: Optional[Union[DentalBenefits, DeclaredChange]] = None
    children: List[ChildRecord] = field(default_factory=list)
    submission_info: Optional[SubmissionInfo] = None

    @classmethod
    def field_parsers(cls):
        return {
            'application_year': _record(ApplicationYear),
            'terms_and_conditions': _record(TermsAndConditions),
            'applicant_information': _record(ApplicantInformation),
            'partner_information': _record(PartnerInformation),
            'contact_information': _record(ContactInformation),
            'phone_number': _record_or_declared_change(PhoneNumber),
            'mailing_address': _record_or_declared_change(Address),
            'home_address': _record_or_declared_change(Address),
            'communication_preferences': _record_or_declared_change(CommunicationPreferences),
            'dental_benefits': _record_or_declared_change(DentalBenefits),
            'children': _children,
            'submission_info': _record(SubmissionInfo),
        }

    def find_child(self, child_id: str) -> Optional[Tuple[int, ChildRecord]]:
        """Find a child by id, returning its index and record."""
        for index, child in enumerate(self.children):
            if child.id == child_id:
                return index, child
        return None


@dataclass
class ReviewState(ApplicationState):
    """Review-ready state: every prerequisite met, derived values attached."""
    age_category: Optional[str] = None
    has_partner: bool = False


def apply_patch(state: ApplicationState, patch: Mapping[str, Any]) -> ApplicationState:
    """
    Apply a partial update to a state.

    Args:
        state: Current state (left unmodified)
        patch: Field name to new value; see module docstring for semantics

    Returns:
        A new ApplicationState with the patch applied

    Raises:
        ValueError: If the patch names an unknown or store-owned field, or a
            value cannot be parsed into its record type
    """
    names = {f.name for f in fields(ApplicationState)}
    parsers = ApplicationState.field_parsers()
    changes = {}

    for key, value in patch.items():
        if key not in names:
            raise ValueError(f'Unknown state field [{key}]')
        if key in IMMUTABLE_FIELDS:
            raise ValueError(f'State field [{key}] cannot be patched')
        if value is UNSET:
            continue

        if value is None:
            if key == 'children':
                changes[key] = []
            elif key == 'edit_mode':
                changes[key] = False
            else:
                changes[key] = None
            continue

        parser = parsers.get(key)
        changes[key] = parser(value) if parser else value

    return replace(state, **changes)


def upsert_child(state: ApplicationState, child_id: str, sections: Mapping[str, Any]) -> ApplicationState:
    """
    Create or update one child, keeping collection order.

    Sections follow the same merge rules as apply_patch. A new child is
    appended to the end of the collection.
    """
    allowed = {'information', 'dental_insurance', 'dental_benefits'}
    unknown = set(sections) - allowed
    if unknown:
        raise ValueError(f'Unknown child fields: {", ".join(sorted(unknown))}')

    parsers = ChildRecord.field_parsers()
    changes = {}
    for key, value in sections.items():
        if value is UNSET:
            continue
        parser = parsers.get(key)
        changes[key] = parser(value) if parser and value is not None else value

    children = list(state.children)
    found = state.find_child(child_id)
    if found is None:
        children.append(replace(ChildRecord(id=child_id), **changes))
    else:
        index, child = found
        children[index] = replace(child, **changes)

    return replace(state, children=children)


def remove_child(state: ApplicationState, child_id: str) -> ApplicationState:
    """Remove one child; unknown ids leave the state unchanged."""
    return replace(state, children=[c for c in state.children if c.id != child_id])


def start_state(application_id: str, timestamp: str, context: Optional[str] = None,
                application_year: Optional[Any] = None) -> ApplicationState:
    """
    Create the initial state for a new flow.

    Args:
        application_id: New application id
        timestamp: ISO 8601 creation time
        context: 'intake' or 'renewal' for protected flows
        application_year: ApplicationYear or dict

    Returns:
        Empty ApplicationState
    """
    if context is not None and context not in APPLICATION_CONTEXTS:
        raise ValueError(f'Unknown application context [{context}]')

    return ApplicationState(
        id=application_id,
        edit_mode=False,
        last_updated_on=timestamp,
        context=context,
        application_year=ApplicationYear.from_dict(application_year) if application_year is not None else None,
        children=[]
    )
