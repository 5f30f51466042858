"""
Tests for the access resolver.
"""

from datetime import timedelta

import pytest

from exam_engine.errors import AccessDenied, NotFound, NotYetOpen
from exam_engine.services.access import AccessDecision, require_access, resolve_access
from exam_engine.timeutil import utcnow

from conftest import ASHA, DIVYA, OUTSIDER, RAHUL


class TestResolveAccess:

    def test_cohort_member_inside_window(self, roster, make_test):
        test = make_test()
        assert resolve_access(test, roster[ASHA], utcnow(), False) is AccessDecision.OK

    def test_missing_or_undeployed_test_is_not_found(self, roster, make_test):
        assert resolve_access(None, roster[ASHA], utcnow(), False) is AccessDecision.NOT_FOUND
        draft = make_test(status="draft")
        assert resolve_access(draft, roster[ASHA], utcnow(), False) is AccessDecision.NOT_FOUND

    def test_other_cohort_is_denied(self, roster, make_test):
        test = make_test()
        assert resolve_access(test, roster[DIVYA], utcnow(), False) is AccessDecision.ACCESS_DENIED

    def test_any_shared_cohort_suffices(self, roster, make_test):
        test = make_test(batches=("JEE-B",))
        assert resolve_access(test, roster[RAHUL], utcnow(), False) is AccessDecision.OK

    def test_allow_list_restricts_cohort(self, roster, make_test):
        test = make_test(students=[{"phoneNumber": "+91 98765 43211"}])
        assert resolve_access(test, roster[RAHUL], utcnow(), False) is AccessDecision.OK
        assert resolve_access(test, roster[ASHA], utcnow(), False) is AccessDecision.ACCESS_DENIED

    def test_allow_list_does_not_bypass_cohort(self, roster, make_test):
        test = make_test(students=[{"phoneNumber": OUTSIDER}])
        assert resolve_access(test, roster[OUTSIDER], utcnow(), False) is AccessDecision.ACCESS_DENIED

    def test_before_start_without_attempt(self, roster, make_test):
        test = make_test(starts_in=timedelta(minutes=30))
        assert resolve_access(test, roster[ASHA], utcnow(), False) is AccessDecision.NOT_YET_OPEN
        assert resolve_access(test, roster[ASHA], utcnow(), True) is AccessDecision.OK

    def test_denied_takes_precedence_over_not_yet_open(self, roster, make_test):
        test = make_test(starts_in=timedelta(minutes=30))
        assert resolve_access(test, roster[DIVYA], utcnow(), False) is AccessDecision.ACCESS_DENIED


class TestRequireAccess:

    def test_raises_matching_errors(self, roster, make_test):
        with pytest.raises(NotFound):
            require_access(None, roster[ASHA], utcnow(), False)
        with pytest.raises(AccessDenied):
            require_access(make_test(), roster[DIVYA], utcnow(), False)

    def test_not_yet_open_carries_start(self, roster, make_test):
        test = make_test(starts_in=timedelta(minutes=30))
        with pytest.raises(NotYetOpen) as info:
            require_access(test, roster[ASHA], utcnow(), False)
        assert info.value.extra["startsAt"].endswith("Z")
        assert info.value.status_code == 400
