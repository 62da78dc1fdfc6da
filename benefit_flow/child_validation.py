"""
Per-child validation.

Validates one ChildRecord against an ordered chain of checks. The first
failing check wins; later checks are not evaluated.

Standard chain:
1. information is filled in (a blank date of birth counts as missing)
2. the applicant is the child's parent or legal guardian (terminal branch)
3. the child's age category is not adults or seniors
4. dental insurance is answered
5. dental benefits are answered

Renewal chains replace the age check with a confirm/update pair on the
dental benefits declared change.
"""

import logging
from dataclasses import dataclass, fields
from functools import cached_property
from typing import Callable, Optional, Sequence, Union

from benefit_flow.application_state import ChildRecord, ReviewChild
from benefit_flow.derivations import (
    AgeCategory,
    is_child_dental_benefits_section_completed,
    is_child_dental_insurance_section_completed,
    is_child_information_section_completed,
)
from benefit_flow.validation import BrokenInvariantError, NeedsStep, ValidationContext


logger = logging.getLogger(__name__)


class ChildValidationContext:
    """A child record plus the validation pass of its owning application."""

    def __init__(self, child: ChildRecord, flow_context: ValidationContext):
        self.child = child
        self.flow = flow_context

    @cached_property
    def age_category(self) -> AgeCategory:
        information = self.child.information
        if information is None or not information.date_of_birth:
            raise BrokenInvariantError(self.flow.state.id, f'children[{self.child.id}].information.date_of_birth')
        return self.flow.age_category_of(information.date_of_birth)

    @property
    def has_date_of_birth(self) -> bool:
        return self.child.information is not None and bool(self.child.information.date_of_birth)


@dataclass(frozen=True)
class ChildCheck:
    """One entry of a child's prerequisite chain."""
    name: str
    is_satisfied: Callable[[ChildValidationContext], bool]
    target_step: str
    # Scoped checks redirect to a page for this child
    scoped: bool = True


def has_information(context: ChildValidationContext) -> bool:
    return is_child_information_section_completed(context.child)


def is_parent_or_guardian(context: ChildValidationContext) -> bool:
    return context.child.information.is_parent is True


def is_eligible_age(context: ChildValidationContext) -> bool:
    return context.age_category not in (AgeCategory.ADULTS, AgeCategory.SENIORS)


def has_dental_insurance(context: ChildValidationContext) -> bool:
    return is_child_dental_insurance_section_completed(context.child)


def has_dental_benefits_answer(context: ChildValidationContext) -> bool:
    return context.child.dental_benefits is not None


def has_dental_benefits(context: ChildValidationContext) -> bool:
    return is_child_dental_benefits_section_completed(context.child)


def to_review_child(child: ChildRecord, age_category: Optional[AgeCategory]) -> ReviewChild:
    values = {f.name: getattr(child, f.name) for f in fields(ChildRecord)}
    return ReviewChild(**values, age_category=age_category)


def validate_child(child: ChildRecord, checks: Sequence[ChildCheck],
                   context: ValidationContext) -> Union[ReviewChild, NeedsStep]:
    """
    Validate one child.

    Args:
        child: Child record, possibly with undefined sections
        checks: Ordered chain of checks
        context: Validation pass of the owning application

    Returns:
        ReviewChild with its age category, or NeedsStep for the first failing
        check (with child_id in the route params when the check is scoped)
    """
    child_context = ChildValidationContext(child, context)

    for check in checks:
        if not check.is_satisfied(child_context):
            logger.debug(
                f'Child check [{check.name}] not met; application id: [{context.state.id}], '
                f'child id: [{child.id}]'
            )
            return NeedsStep(
                step_id=check.target_step,
                route_params=context.route_params(child.id if check.scoped else None),
                reason=check.name
            )

    age_category = child_context.age_category if child_context.has_date_of_birth else None
    return to_review_child(child, age_category)
