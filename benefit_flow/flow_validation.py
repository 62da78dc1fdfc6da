"""
Flow State Validator

Walks a flow's ordered prerequisite table over an application state and
returns either the first unmet prerequisite (NeedsStep) or the normalized
review state (ReviewReady).

Walk Rules:
===========
1. Prerequisites are evaluated strictly in declared order; the first unmet
   one determines the redirect
2. Children prerequisites validate each child in collection order; the first
   child with an unmet check determines the redirect
3. An empty children collection is unmet when the flow requires dependants,
   and allowed when children are optional
4. After every prerequisite passes, the flow's required fields and partner
   consistency are asserted; a failure there is a flow table defect and raises
   BrokenInvariantError

edit_mode never changes which prerequisites are checked; it only changes where
a successful save goes next (see next_step_after_save).
"""

import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from benefit_flow.application_state import ApplicationState, ChildRecord, ReviewChild, ReviewState
from benefit_flow.child_validation import ChildCheck, validate_child
from benefit_flow.derivations import effective_partner_information, is_new_child_state
from benefit_flow.eligibility_rules import EligibilityRules
from benefit_flow.validation import BrokenInvariantError, NeedsStep, ReviewReady, ValidationContext


logger = logging.getLogger(__name__)

CHILD_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')


class UnknownFlowError(LookupError):
    """No flow is registered under the requested id."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f'Unknown flow [{flow_id}]')


@dataclass(frozen=True)
class Prerequisite:
    """A condition that must hold before later steps may be reached."""
    name: str
    is_satisfied: Callable[[ValidationContext], bool]
    target_step: str
    params_from_state: Optional[Callable[[ValidationContext], Dict[str, str]]] = None

    def params(self, context: ValidationContext) -> Dict[str, str]:
        if self.params_from_state is not None:
            return self.params_from_state(context)
        return context.route_params()


@dataclass(frozen=True)
class ChildrenPrerequisite:
    """Validates every child with the same check chain."""
    name: str
    child_checks: Tuple[ChildCheck, ...]
    # None means children are optional for the flow
    empty_target_step: Optional[str] = None


FlowEntry = Union[Prerequisite, ChildrenPrerequisite]


@dataclass(frozen=True)
class FlowDefinition:
    """Data-only description of one flow variant."""
    id: str
    type_of_application: str
    context: Optional[str]
    prerequisites: Tuple[FlowEntry, ...]
    review_step: str
    confirmation_step: str
    entry_step: str
    type_step: str
    children_index_step: Optional[str] = None
    required_fields: Tuple[str, ...] = ()

    def accepts(self, state: ApplicationState) -> bool:
        """Whether the state's type (and context) select this flow."""
        if state.type_of_application != self.type_of_application:
            return False
        return self.context is None or state.context == self.context


@dataclass
class SingleChildState:
    """One child loaded for its own pages."""
    child: ChildRecord
    child_number: int
    is_new: bool
    edit_mode: bool

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': True,
            'child': self.child.to_dict(),
            'child_number': self.child_number,
            'is_new': self.is_new,
            'edit_mode': self.edit_mode,
        }


def _validate_children(prerequisite: ChildrenPrerequisite,
                       context: ValidationContext) -> Union[List[ReviewChild], NeedsStep]:
    children = context.state.children

    if not children:
        if prerequisite.empty_target_step is None:
            return []
        return NeedsStep(prerequisite.empty_target_step, context.route_params(), prerequisite.name)

    review_children = []
    for child in children:
        outcome = validate_child(child, prerequisite.child_checks, context)
        if isinstance(outcome, NeedsStep):
            return outcome
        review_children.append(outcome)

    return review_children


def _assert_required_fields(flow: FlowDefinition, context: ValidationContext):
    state = context.state
    for name in flow.required_fields:
        value = getattr(state, name)
        if value is None or (name == 'children' and not value):
            raise BrokenInvariantError(state.id, name)


def _assert_partner_consistency(flow: FlowDefinition, context: ValidationContext):
    state = context.state
    partner_information = effective_partner_information(state, context.has_partner)

    if context.has_partner and partner_information is None:
        raise BrokenInvariantError(state.id, 'partner_information')
    if not context.has_partner and partner_information is not None:
        raise BrokenInvariantError(
            state.id, 'partner_information',
            f'Partner information present without a partner marital status; flow: [{flow.id}], '
            f'application id: [{state.id}]'
        )


def _to_review_state(state: ApplicationState, context: ValidationContext,
                     children: Optional[List[ReviewChild]]) -> ReviewState:
    values = {f.name: getattr(state, f.name) for f in fields(ApplicationState)}
    if children is not None:
        values['children'] = children
    else:
        values['children'] = list(state.children)
    values['partner_information'] = effective_partner_information(state, context.has_partner)

    return ReviewState(
        **values,
        age_category=context.age_category,
        has_partner=context.has_partner
    )


def validate_flow_state(flow: FlowDefinition, state: ApplicationState, today: Optional[Any] = None,
                        rules: Optional[EligibilityRules] = None) -> Union[ReviewReady, NeedsStep]:
    """
    Validate a state against a flow's prerequisite table.

    Args:
        flow: Flow definition
        state: Current state snapshot (not modified)
        today: Calendar day for age derivations (defaults to the rules' today)
        rules: Eligibility rules (defaults to the current application's)

    Returns:
        NeedsStep for the first unmet prerequisite, or ReviewReady

    Raises:
        BrokenInvariantError: If the table lets through a state missing a
            field the review needs
    """
    context = ValidationContext(state, today, rules)
    review_children = None

    for prerequisite in flow.prerequisites:
        if isinstance(prerequisite, ChildrenPrerequisite):
            outcome = _validate_children(prerequisite, context)
            if isinstance(outcome, NeedsStep):
                return outcome
            review_children = outcome
            continue

        if not prerequisite.is_satisfied(context):
            logger.debug(
                f'Prerequisite [{prerequisite.name}] of [{flow.id}] not met; '
                f'redirecting to [{prerequisite.target_step}], application id: [{state.id}]'
            )
            return NeedsStep(prerequisite.target_step, prerequisite.params(context), prerequisite.name)

    _assert_required_fields(flow, context)
    _assert_partner_consistency(flow, context)

    return ReviewReady(_to_review_state(state, context, review_children))


def check_flow_entry(flow: FlowDefinition, state: ApplicationState, step_id: str) -> Optional[NeedsStep]:
    """
    Guard a page load in a flow.

    Returns:
        NeedsStep when the state belongs to another flow, is already
        submitted, or asks for the confirmation before submission; None when
        the step may be shown
    """
    params = {'id': state.id}

    if state.type_of_application is not None and not flow.accepts(state) and step_id != flow.type_step:
        logger.info(
            f'Application [{state.id}] of type [{state.type_of_application}] does not match '
            f'flow [{flow.id}]; redirecting to [{flow.type_step}]'
        )
        return NeedsStep(flow.type_step, params, 'type_mismatch')

    if state.submission_info is not None and step_id != flow.confirmation_step:
        return NeedsStep(flow.confirmation_step, params, 'submitted')

    if state.submission_info is None and step_id == flow.confirmation_step:
        return NeedsStep(flow.entry_step, params, 'not_submitted')

    return None


def next_step_after_save(flow: FlowDefinition, state: ApplicationState, today: Optional[Any] = None,
                         rules: Optional[EligibilityRules] = None) -> NeedsStep:
    """
    Where a successful page save goes next.

    In edit mode the save returns to review. Otherwise the user continues to
    the first unmet prerequisite, or to review when none is left.
    """
    params = {'id': state.id}
    if state.edit_mode:
        return NeedsStep(flow.review_step, params, 'edit_mode')

    result = validate_flow_state(flow, state, today, rules)
    if result.ok:
        return NeedsStep(flow.review_step, params, 'review')
    return result


def load_single_child_state(flow: FlowDefinition, state: ApplicationState,
                            child_id: Any) -> Union[SingleChildState, NeedsStep]:
    """
    Load one child for its own pages.

    Args:
        flow: Flow definition with a children index step
        state: Current state
        child_id: Child id from the route

    Returns:
        SingleChildState, or NeedsStep to the children index when the id is
        malformed or unknown

    Raises:
        ValueError: If the flow has no children pages
    """
    if flow.children_index_step is None:
        raise ValueError(f'Flow [{flow.id}] has no children pages')

    params = {'id': state.id}

    if not isinstance(child_id, str) or not CHILD_ID_PATTERN.match(child_id):
        logger.warning(f'Invalid child id format; child id: [{child_id}], application id: [{state.id}]')
        return NeedsStep(flow.children_index_step, params, 'invalid_child_id')

    found = state.find_child(child_id)
    if found is None:
        logger.warning(f'Child not found; child id: [{child_id}], application id: [{state.id}]')
        return NeedsStep(flow.children_index_step, params, 'unknown_child')

    index, child = found
    is_new = is_new_child_state(child)
    return SingleChildState(
        child=child,
        child_number=index + 1,
        is_new=is_new,
        # A new child completes every page before returning to review
        edit_mode=state.edit_mode and not is_new
    )


def collect_steps(flow: FlowDefinition) -> List[str]:
    """Every step id a flow can redirect to, in table order."""
    steps = []
    for prerequisite in flow.prerequisites:
        if isinstance(prerequisite, ChildrenPrerequisite):
            targets = [prerequisite.empty_target_step] + [c.target_step for c in prerequisite.child_checks]
        else:
            targets = [prerequisite.target_step]
        for target in targets:
            if target is not None and target not in steps:
                steps.append(target)
    return steps
