"""Tests for the fluent expectation wrapper."""

import re

import pytest

from gauntlet.core.assertions import UNDEFINED
from gauntlet.core.errors import AssertionFailure
from gauntlet.core.expect import expect


class TestExpect:
    def test_chains_return_the_expectation(self) -> None:
        expect(5).gt(1).lt(10).gte(5).lte(5).equal(5).instance_of(int)

    def test_failure_propagates(self) -> None:
        with pytest.raises(AssertionFailure):
            expect(2 + 2).equal(5)

    def test_containers(self) -> None:
        expect([1, 2, 3]).length(3).contain(2).deep_equal((1, 2, 3))

    def test_truthiness_helpers(self) -> None:
        expect(True).be_true()
        expect(False).be_false()
        expect(None).be_none().be_defined()
        expect(UNDEFINED).be_undefined()

    def test_raises(self) -> None:
        def boom() -> None:
            raise KeyError("missing")

        expect(boom).raises(KeyError)
        expect(lambda: None).not_.raises()

    def test_match(self) -> None:
        expect("v1.2.3").match(re.compile(r"\d+\.\d+"))


class TestNegation:
    def test_not_inverts_a_passing_assertion(self) -> None:
        with pytest.raises(AssertionFailure, match="not to equal 4"):
            expect(4).not_.equal(4)

    def test_not_inverts_a_failing_assertion(self) -> None:
        expect(4).not_.equal(5)

    def test_double_negation_restores_polarity(self) -> None:
        expect(4).not_.not_.equal(4)
        with pytest.raises(AssertionFailure):
            expect(4).not_.not_.equal(5)

    @pytest.mark.parametrize("actual, expected", [(1, 1), (1, 2), ("a", "a"), ([1], [2])])
    def test_negated_passes_iff_positive_fails(self, actual: object, expected: object) -> None:
        try:
            expect(actual).equal(expected)
            positive_passed = True
        except AssertionFailure:
            positive_passed = False

        try:
            expect(actual).not_.equal(expected)
            negated_passed = True
        except AssertionFailure:
            negated_passed = False

        assert positive_passed != negated_passed

    def test_negation_applies_to_next_assertion_only(self) -> None:
        expectation = expect(3).not_.equal(4)
        assert not expectation.negated
        expectation.equal(3)

    def test_negation_resets_after_a_failure(self) -> None:
        expectation = expect(3)
        with pytest.raises(AssertionFailure):
            expectation.not_.equal(3)
        assert not expectation.negated

    def test_incomparable_values_are_failed_assertions(self) -> None:
        with pytest.raises(AssertionFailure, match="Cannot compare"):
            expect(1).gt("a")
        expect(1).not_.gt("a")
        expect(None).not_.lte(0)
        expect(5).not_.contain(1)
        expect(5).not_.length(0)

    def test_misused_expectations_are_not_negated(self) -> None:
        """An invalid expected argument is a usage error, not a failed assertion."""

        def boom() -> None:
            raise ValueError("boom")

        with pytest.raises(TypeError):
            expect(boom).not_.raises(42)  # type: ignore[arg-type]
