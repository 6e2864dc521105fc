"""
Tests for identity quality scoring and cross-store record comparison.
"""

from dualstore.services.consistency import ConsistencyScorer, flatten_store_a_row
from dualstore.services.identity_contract import transform_b_to_a


class TestScoreIdentity:
    def test_complete_identity_scores_100(self, auth_identity):
        report = ConsistencyScorer().score_identity(auth_identity)

        assert report.score == 100
        assert report.issues == []
        assert report.recommendations == []

    def test_penalties_accumulate(self, user_id):
        report = ConsistencyScorer().score_identity({"id": user_id})

        # email 20, unverified 10, username 10, full name 5, avatar 5, never signed in 10
        assert report.score == 40
        assert "email missing" in report.issues
        assert "user has never signed in" in report.issues
        assert len(report.issues) == 6

    def test_unverified_email_only(self, auth_identity):
        auth_identity["email_confirmed_at"] = None

        report = ConsistencyScorer().score_identity(auth_identity)

        assert report.score == 90
        assert report.issues == ["email not verified"]

    def test_malformed_identity_scores_zero(self):
        report = ConsistencyScorer().score_identity({"id": "nope"})

        assert report.score == 0
        assert report.issues


class TestScorePair:
    def test_identical_identity_scores_100(self, auth_identity):
        scorer = ConsistencyScorer()

        result = scorer.score_pair(auth_identity, transform_b_to_a(auth_identity))

        assert result.score == 100
        assert result.is_valid


class TestCompareRecords:
    def test_identical_records_are_consistent(self):
        row = {"id": "r1", "title": "Plan", "steps": [1, 2]}

        report = ConsistencyScorer().compare_records(dict(row), dict(row))

        assert report.consistent is True
        assert report.differences == []

    def test_store_a_payload_is_flattened(self):
        store_a = {
            "id": "r1",
            "collection": "plans",
            "user_id": None,
            "payload": {"title": "Plan"},
            "created_at": "2026-01-01T00:00:00",
            "updated_at": "2026-01-01T00:00:00",
        }
        store_b = {"id": "r1", "title": "Plan", "created_at": "2026-02-02T00:00:00+00:00"}

        report = ConsistencyScorer().compare_records(store_a, store_b)

        assert report.consistent is True

    def test_field_differences_are_listed(self):
        report = ConsistencyScorer().compare_records(
            {"id": "r1", "title": "Plan", "status": "draft"},
            {"id": "r1", "title": "Plan v2", "status": "draft"},
        )

        assert report.consistent is False
        assert report.differences == ["title mismatch: 'Plan' != 'Plan v2'"]
        assert report.recommendations == ["run a sync to restore consistency between stores"]

    def test_one_sided_record(self):
        report = ConsistencyScorer().compare_records({"id": "r1"}, None)

        assert report.consistent is False
        assert report.differences == ["record present in only one store"]
        assert report.store_a_data == {"id": "r1"}

    def test_missing_everywhere(self):
        report = ConsistencyScorer().compare_records(None, None)

        assert report.consistent is False
        assert report.differences == ["record missing from both stores"]

    def test_custom_ignored_fields(self):
        scorer = ConsistencyScorer(ignored_fields={"etag"})

        report = scorer.compare_records({"id": "r1", "etag": "a"}, {"id": "r1", "etag": "b"})

        assert report.consistent is True


def test_flatten_leaves_plain_rows_alone():
    assert flatten_store_a_row({"id": "x", "payload": "text"}) == {"id": "x", "payload": "text"}
