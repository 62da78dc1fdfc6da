"""
Eligibility rules.

Program business rules that the derivations read instead of hard-coding:

1. AGE BUCKETS
   - children: age < youth_min
   - youth: youth_min <= age < adults_min
   - adults: adults_min <= age < seniors_min
   - seniors: age >= seniors_min

2. PARTNER MARITAL STATUSES
   - Marital status codes that require partner information

3. EMAIL COMMUNICATION METHODS
   - Preferred communication methods that require a verified email

4. ELIGIBILITY WINDOWS
   - Age ranges that only become eligible from a coverage start date

Rules are built once per application from its configuration.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from flask import current_app, has_app_context

from benefit_flow.utils import parse_iso_date, today_utc


RULES_EXTENSION_KEY = 'benefit_flow.rules'


@dataclass(frozen=True)
class AgeBuckets:
    """Lower bounds (inclusive) of each age category."""
    youth_min: int = 16
    adults_min: int = 18
    seniors_min: int = 65

    def __post_init__(self):
        if not 0 < self.youth_min < self.adults_min < self.seniors_min:
            raise ValueError(
                f'Age buckets must be increasing; youth_min: [{self.youth_min}], '
                f'adults_min: [{self.adults_min}], seniors_min: [{self.seniors_min}]'
            )


@dataclass(frozen=True)
class EligibilityWindow:
    """An age range that becomes eligible on a given start date."""
    min_age: int
    max_age: int
    start_date: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EligibilityWindow':
        window = cls(
            min_age=int(data['minAge'] if 'minAge' in data else data['min_age']),
            max_age=int(data['maxAge'] if 'maxAge' in data else data['max_age']),
            start_date=str(data['startDate'] if 'startDate' in data else data['start_date'])
        )
        # Fail at load time rather than during validation
        parse_iso_date(window.start_date)
        return window


@dataclass(frozen=True)
class EligibilityRules:
    """Configured program rules."""
    age_buckets: AgeBuckets = field(default_factory=AgeBuckets)
    partner_marital_statuses: FrozenSet[str] = frozenset({'married', 'commonlaw'})
    email_communication_methods: FrozenSet[str] = frozenset({'email'})
    eligibility_windows: Tuple[EligibilityWindow, ...] = ()
    current_date: Optional[str] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'EligibilityRules':
        """
        Build rules from a Flask config mapping.

        Args:
            config: Mapping with AGE_*, PARTNER_MARITAL_STATUSES,
                EMAIL_COMMUNICATION_METHODS, APPLY_ELIGIBILITY_RULES and
                APPLICATION_CURRENT_DATE keys (all optional)

        Returns:
            EligibilityRules

        Raises:
            ValueError: If a configured value is invalid
        """
        defaults = AgeBuckets()
        age_buckets = AgeBuckets(
            youth_min=int(config.get('AGE_YOUTH_MIN', defaults.youth_min)),
            adults_min=int(config.get('AGE_ADULTS_MIN', defaults.adults_min)),
            seniors_min=int(config.get('AGE_SENIORS_MIN', defaults.seniors_min))
        )

        windows_value = config.get('APPLY_ELIGIBILITY_RULES') or []
        if isinstance(windows_value, str):
            windows_value = json.loads(windows_value)

        current_date = config.get('APPLICATION_CURRENT_DATE') or None
        if current_date:
            parse_iso_date(current_date)

        return cls(
            age_buckets=age_buckets,
            partner_marital_statuses=_as_code_set(
                config.get('PARTNER_MARITAL_STATUSES'), cls.partner_marital_statuses
            ),
            email_communication_methods=_as_code_set(
                config.get('EMAIL_COMMUNICATION_METHODS'), cls.email_communication_methods
            ),
            eligibility_windows=tuple(EligibilityWindow.from_dict(w) for w in windows_value),
            current_date=current_date
        )

    def today(self) -> date:
        """The calendar day validation runs against."""
        if self.current_date:
            return parse_iso_date(self.current_date)
        return today_utc()


DEFAULT_RULES = EligibilityRules()


def _as_code_set(value: Any, default: FrozenSet[str]) -> FrozenSet[str]:
    """Coerce a comma-separated string or iterable into a set of codes."""
    if value is None or value == '':
        return default
    if isinstance(value, str):
        return frozenset(code.strip() for code in value.split(',') if code.strip())
    return frozenset(str(code) for code in value)


def get_rules() -> EligibilityRules:
    """
    Get the rules of the current application.

    Outside an application context (or before the app registered its rules)
    the defaults are returned.
    """
    if has_app_context():
        rules = current_app.extensions.get(RULES_EXTENSION_KEY)
        if rules is not None:
            return rules
    return DEFAULT_RULES
