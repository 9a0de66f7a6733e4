"""Tests for bqloader.routing.tracker module."""

import json

import pytest

from bqloader.core.models import LoadRequest
from bqloader.routing.tracker import Eligibility, RetryCycleTracker
from tests.helpers import request_payload


def _request(attempts=None) -> LoadRequest:
    return LoadRequest.from_bytes(json.dumps(request_payload(attempts=attempts)).encode())


class TestAdmit:
    @pytest.mark.parametrize(
        "attempts,expected",
        [
            (None, Eligibility.ELIGIBLE),
            (0, Eligibility.ELIGIBLE),
            (9, Eligibility.ELIGIBLE),
            (10, Eligibility.EXPIRED),
            (11, Eligibility.EXPIRED),
        ],
    )
    def test_ceiling(self, attempts, expected):
        assert RetryCycleTracker(10).admit(_request(attempts)) is expected

    def test_zero_ceiling_expires_everything(self):
        assert RetryCycleTracker(0).admit(_request()) is Eligibility.EXPIRED

    def test_negative_ceiling_rejected(self):
        with pytest.raises(ValueError):
            RetryCycleTracker(-1)


class TestRecordAttempt:
    def test_absent_counter_becomes_one(self):
        assert RetryCycleTracker(10).record_attempt(_request()).submission_attempts == 1

    def test_increments_by_one(self):
        request = _request(attempts=4)
        retried = RetryCycleTracker(10).record_attempt(request)
        assert retried.submission_attempts == 5
        assert request.submission_attempts == 4
