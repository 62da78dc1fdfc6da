"""
Unit tests for the flow registry.
"""

import pytest
from benefit_flow.flow_validation import ChildrenPrerequisite, UnknownFlowError, collect_steps
from benefit_flow.flows import FLOW_REGISTRY, get_flow
from benefit_flow.utils import path_for


PARAMS = {'id': 'abc', 'child_id': '1'}


class TestRegistry:
    def test_registered_flows(self):
        assert set(FLOW_REGISTRY) == {
            'apply-adult', 'apply-child', 'apply-adult-child',
            'renew-adult', 'renew-child', 'renew-adult-child',
            'protected-intake-adult', 'protected-intake-children', 'protected-intake-family',
            'protected-renewal-adult', 'protected-renewal-children', 'protected-renewal-family',
        }

    def test_unknown_flow(self):
        with pytest.raises(UnknownFlowError):
            get_flow('apply-delegate')

    def test_unknown_flow_is_lookup_error(self):
        with pytest.raises(LookupError):
            get_flow('')

    @pytest.mark.parametrize('flow_id', sorted(FLOW_REGISTRY))
    def test_every_step_resolves(self, flow_id):
        flow = get_flow(flow_id)
        steps = collect_steps(flow) + [flow.review_step, flow.confirmation_step, flow.entry_step, flow.type_step]
        for step in steps:
            path = path_for(step, PARAMS)
            assert path.startswith('/en/')
            assert '{' not in path

    @pytest.mark.parametrize('flow_id', sorted(FLOW_REGISTRY))
    def test_prerequisite_names_unique(self, flow_id):
        names = [p.name for p in get_flow(flow_id).prerequisites]
        assert len(names) == len(set(names))

    @pytest.mark.parametrize('flow_id', sorted(FLOW_REGISTRY))
    def test_children_index_matches_children_prerequisite(self, flow_id):
        flow = get_flow(flow_id)
        has_children = any(isinstance(p, ChildrenPrerequisite) for p in flow.prerequisites)
        assert has_children == (flow.children_index_step is not None)

    def test_protected_flows_carry_context(self):
        assert get_flow('protected-renewal-family').context == 'renewal'
        assert get_flow('protected-intake-children').type_of_application == 'children'
        assert get_flow('apply-adult').context is None

    def test_protected_review_step(self):
        assert get_flow('protected-intake-family').review_step == \
            'protected/application/{id}/intake-family/review-and-submit'

    def test_optional_children(self):
        children = [p for p in get_flow('renew-adult-child').prerequisites if isinstance(p, ChildrenPrerequisite)]
        assert children[0].empty_target_step is None

    def test_required_children(self):
        for flow_id in ('apply-child', 'apply-adult-child', 'renew-child', 'protected-intake-children'):
            children = [p for p in get_flow(flow_id).prerequisites if isinstance(p, ChildrenPrerequisite)]
            assert children[0].empty_target_step is not None, flow_id
