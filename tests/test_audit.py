"""
Claim audit trail and structured logging tests.
"""

from unittest.mock import patch

import pytest

from volunteer_claims.core.audit import add_audit_event, list_audit_events
from volunteer_claims.core.errors import Forbidden
from volunteer_claims.core.schema import ClaimState
from volunteer_claims.util.logging import StructuredLogger, audit_event


class TestAuditTrail:

    def test_engine_operations_are_recorded(self, engine, actor, db_path, service_draft):
        claim = engine.submit(actor("x"), service_draft())
        engine.review(actor("c1"), claim.id, ClaimState.REJECTED, "Missing signature")

        entries = list_audit_events(claim_id=claim.id, db_path=db_path)

        assert [e.action for e in entries] == ["claim_rejected", "claim_submitted"]
        assert entries[0].actor_id == "c1"
        assert entries[0].payload["comment"] == "Missing signature"
        assert entries[1].payload["kind"] == "ad_hoc_service"

    def test_event_changes_are_recorded(self, engine, actor, db_path, event_factory):
        event = event_factory(delegates=["y"])

        actions = [e.action for e in list_audit_events(event_id=event.id, db_path=db_path)]
        assert actions == ["delegate_assigned", "event_created"]

    def test_disabled_audit_writes_nothing(self, store, db_path):
        with patch('volunteer_claims.core.audit.is_audit_enabled', return_value=False):
            assert add_audit_event("c1", "claim_approved", claim_id="c-1", db_path=db_path) is False
        assert list_audit_events(db_path=db_path) == []

    def test_limit(self, store, db_path):
        for i in range(3):
            add_audit_event("c1", f"action_{i}", db_path=db_path)
        assert [e.action for e in list_audit_events(limit=2, db_path=db_path)] == ["action_2", "action_1"]


class TestStructuredLogging:

    def test_free_text_is_redacted(self):
        payload = {"hours": 2, "description": "Helped my neighbour Anna", "comment": None, "proof_reference": ["a", "b"]}

        with patch('volunteer_claims.util.logging.logger.log_operation') as mock_log:
            audit_event("claim_audit.claim_updated", {"actor_id": "x", "claim_id": None}, payload)

        details = mock_log.call_args[0][2]
        assert details == {
            "actor_id": "x",
            "payload": {
                "hours": 2,
                "description": "[REDACTED 24 chars]",
                "comment": None,
                "proof_reference": "[REDACTED]",
            },
        }

    def test_reveal_by_narrowing_sensitive_fields(self):
        with patch('volunteer_claims.util.logging.logger.log_operation') as mock_log:
            audit_event("claim_audit.claim_updated", {"actor_id": "x"}, {"description": "plain"}, sensitive_fields=[])

        assert mock_log.call_args[0][2]["payload"]["description"] == "plain"

    def test_audit_event_goes_through_log_operation(self):
        with patch('volunteer_claims.util.logging.logger.log_operation') as mock_log:
            audit_event("claim_audit.claim_submitted", {"actor_id": "x"}, {"description": "secret"})

        mock_log.assert_called_once()
        operation, status, details = mock_log.call_args[0]
        assert operation == "claim_submitted"
        assert status == "audit"
        assert details["payload"]["description"] == "[REDACTED 6 chars]"

    def test_denials_log_the_reason(self, caplog):
        structured = StructuredLogger("volunteer_claims.test")
        structured.logger.propagate = True

        with caplog.at_level("INFO", logger="volunteer_claims.test"):
            structured.log_authorization_denied("review", "y", "STUDENT_COORDINATOR", "c-1",
                                                "self-review is not allowed")

        assert "authz.review" in caplog.text
        assert "self-review is not allowed" in caplog.text

    def test_engine_denial_is_logged(self, engine, actor, service_draft):
        claim = engine.submit(actor("x"), service_draft())

        with patch('volunteer_claims.core.engine.logger') as mock_logger:
            with pytest.raises(Forbidden):
                engine.get(actor("y"), claim.id)

        mock_logger.log_authorization_denied.assert_called_once()
        assert mock_logger.log_authorization_denied.call_args[0][0] == "get"
