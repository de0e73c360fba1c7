"""
Tests for ConsentAuthority

Grant validation, strict expiry, scope matching, revocation and the
authorize/find_active consistency.
"""

from datetime import datetime, timedelta, timezone
import threading

import pytest

from consent_ledger.consent.authority import ConsentAuthority
from consent_ledger.consent.models import ConsentScope, ConsentStatus
from consent_ledger.consent.store import InMemoryConsentStore
from consent_ledger.errors import ConsentDenied, InvalidGrant, NotFound

DAY = timedelta(hours=24)


class TestGrant:
    """Test consent creation and validation of grant input."""

    def test_grant_persists_and_returns_consent(self, authority, consent_store, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)

        assert consent.patient_ref == "P1"
        assert consent.scopes == frozenset({"VIEW"})
        assert consent.granted_at == t0
        assert consent.expires_at == t0 + DAY
        assert consent.created_at == consent.updated_at == t0
        assert consent.status == ConsentStatus.ACTIVE
        assert consent_store.find_by_id(consent.id) == consent

    def test_duplicate_scopes_collapse(self, authority, t0):
        consent = authority.grant("P1", ["VIEW", "VIEW", " VIEW "], t0, t0 + DAY)
        assert consent.scopes == frozenset({"VIEW"})

    def test_enum_scopes_are_stored_as_strings(self, authority, t0):
        consent = authority.grant("P1", [ConsentScope.PATIENT_VIEW], t0, t0 + DAY)
        assert consent.scopes == frozenset({"PATIENT_VIEW"})
        assert consent.has_scope("PATIENT_VIEW")

    def test_empty_scopes_rejected_and_nothing_persisted(self, authority, consent_store, t0):
        with pytest.raises(InvalidGrant):
            authority.grant("P1", set(), t0, t0 + DAY)
        assert len(consent_store) == 0

    def test_blank_scope_entry_rejected(self, authority, consent_store, t0):
        with pytest.raises(InvalidGrant):
            authority.grant("P1", ["VIEW", "  "], t0, t0 + DAY)
        assert len(consent_store) == 0

    @pytest.mark.parametrize("patient_ref", ["", "   ", None])
    def test_blank_patient_ref_rejected(self, authority, consent_store, t0, patient_ref):
        with pytest.raises(InvalidGrant):
            authority.grant(patient_ref, {"VIEW"}, t0, t0 + DAY)
        assert len(consent_store) == 0

    @pytest.mark.parametrize("offset", [timedelta(0), -timedelta(seconds=1), -DAY])
    def test_expiry_must_follow_grant(self, authority, consent_store, t0, offset):
        with pytest.raises(InvalidGrant):
            authority.grant("P1", {"VIEW"}, t0, t0 + offset)
        assert len(consent_store) == 0

    def test_naive_datetimes_are_taken_as_utc(self, authority):
        consent = authority.grant("P1", {"VIEW"}, datetime(2026, 1, 1), datetime(2026, 1, 2))
        assert consent.granted_at.tzinfo == timezone.utc
        assert consent.expires_at == datetime(2026, 1, 2, tzinfo=timezone.utc)

    def test_concurrent_grants_for_same_patient_both_succeed(self, authority, consent_store, t0):
        results = []

        def grant():
            results.append(authority.grant("P1", {"VIEW", "NOTIFY"}, t0, t0 + DAY))

        threads = [threading.Thread(target=grant) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 2
        assert results[0].id != results[1].id
        assert len(consent_store.find_by_patient_ref("P1")) == 2


class TestFindActive:
    """Test validity evaluation."""

    def test_valid_before_expiry(self, authority, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        assert authority.find_active("P1", "VIEW", t0 + timedelta(hours=1)) == consent

    def test_expiry_is_strict(self, authority, t0):
        authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        assert authority.find_active("P1", "VIEW", t0 + DAY - timedelta(microseconds=1)) is not None
        assert authority.find_active("P1", "VIEW", t0 + DAY) is None

    def test_expired_consent_never_returned(self, authority, t0):
        authority.grant("P1", {"VIEW"}, t0 - 10 * DAY, t0 - DAY)
        assert authority.find_active("P1", "VIEW", t0) is None

    def test_grant_time_is_not_checked(self, authority, t0):
        # Only expiry matters at query time
        consent = authority.grant("P1", {"VIEW"}, t0 + DAY, t0 + 2 * DAY)
        assert authority.find_active("P1", "VIEW", t0) == consent

    def test_scope_must_match_exactly(self, authority, t0):
        authority.grant("P1", {"EMERGENCY_CONTACT_NOTIFY_DETAILED"}, t0, t0 + DAY)
        assert authority.find_active("P1", "EMERGENCY_CONTACT_NOTIFY", t0) is None
        assert authority.find_active("P1", "EMERGENCY_CONTACT_NOTIFY_DETAILED", t0) is not None

    def test_other_patient_not_matched(self, authority, t0):
        authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        assert authority.find_active("P2", "VIEW", t0) is None

    def test_most_recent_grant_wins(self, authority, t0):
        authority.grant("P1", {"VIEW"}, t0 - DAY, t0 + 5 * DAY)
        newer = authority.grant("P1", {"VIEW", "NOTIFY"}, t0, t0 + DAY)
        authority.grant("P1", {"VIEW"}, t0 - 2 * DAY, t0 + 9 * DAY)

        assert authority.find_active("P1", "VIEW", t0) == newer
        # Stable for a fixed store state
        assert authority.find_active("P1", "VIEW", t0) == newer

    def test_falls_back_to_older_grant_after_newer_expires(self, authority, t0):
        older = authority.grant("P1", {"VIEW"}, t0 - DAY, t0 + 5 * DAY)
        authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        assert authority.find_active("P1", "VIEW", t0 + 2 * DAY) == older

    def test_defaults_to_clock_now(self, authority, clock, t0):
        authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        assert authority.find_active("P1", "VIEW") is not None

        clock.advance(DAY)
        assert authority.find_active("P1", "VIEW") is None

    def test_list_active_filters_expired_and_revoked(self, authority, t0):
        live = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        authority.grant("P1", {"VIEW"}, t0 - 2 * DAY, t0 - DAY)
        revoked = authority.grant("P1", {"NOTIFY"}, t0, t0 + DAY)
        authority.revoke(revoked.id)

        assert authority.list_active("P1", t0) == [live]
        assert len(authority.list_for_patient("P1")) == 3


class TestAuthorize:
    """Test the enforcement point."""

    def test_scenario_grant_then_expire(self, authority, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)

        assert authority.authorize("P1", "VIEW", t0 + timedelta(hours=1)) == consent
        with pytest.raises(ConsentDenied) as exc_info:
            authority.authorize("P1", "VIEW", t0 + timedelta(hours=25))
        assert exc_info.value.patient_ref == "P1"
        assert exc_info.value.scope == "VIEW"

    def test_denied_is_not_not_found(self, authority, t0):
        with pytest.raises(ConsentDenied):
            authority.authorize("UNKNOWN", "VIEW", t0)
        assert not issubclass(ConsentDenied, NotFound)

    def test_authorize_consistent_with_find_active(self, authority, t0):
        authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        authority.grant("P2", {"NOTIFY"}, t0 - DAY, t0 + timedelta(hours=6))

        instants = [t0 - DAY, t0, t0 + timedelta(hours=6), t0 + DAY, t0 + 2 * DAY]
        for patient_ref in ("P1", "P2", "P3"):
            for scope in ("VIEW", "NOTIFY"):
                for instant in instants:
                    found = authority.find_active(patient_ref, scope, instant)
                    assert authority.is_authorized(patient_ref, scope, instant) is (found is not None)
                    if found is None:
                        with pytest.raises(ConsentDenied):
                            authority.authorize(patient_ref, scope, instant)
                    else:
                        assert authority.authorize(patient_ref, scope, instant) == found


class TestRevoke:
    """Test revocation in both modes."""

    def test_mark_mode_keeps_history(self, authority, consent_store, clock, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        clock.advance(timedelta(minutes=5))

        revoked = authority.revoke(consent.id)

        assert revoked.status == ConsentStatus.REVOKED
        assert revoked.revoked_at == t0 + timedelta(minutes=5)
        assert revoked.updated_at >= revoked.created_at
        assert consent_store.find_by_id(consent.id).is_revoked
        assert authority.find_active("P1", "VIEW", t0) is None

    def test_second_revoke_is_not_found(self, authority, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        authority.revoke(consent.id)
        with pytest.raises(NotFound):
            authority.revoke(consent.id)

    def test_unknown_consent_is_not_found(self, authority):
        with pytest.raises(NotFound):
            authority.revoke("does-not-exist")
        with pytest.raises(NotFound):
            authority.get("does-not-exist")

    def test_delete_mode_removes_record(self, clock, t0):
        store = InMemoryConsentStore()
        authority = ConsentAuthority(store, clock=clock, revoke_mode="delete")
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)

        authority.revoke(consent.id)

        assert store.find_by_id(consent.id) is None
        assert authority.find_active("P1", "VIEW", t0) is None
        with pytest.raises(NotFound):
            authority.revoke(consent.id)

    def test_revoke_leaves_other_consents_valid(self, authority, t0):
        keep = authority.grant("P1", {"VIEW"}, t0 - DAY, t0 + DAY)
        drop = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        authority.revoke(drop.id)
        assert authority.find_active("P1", "VIEW", t0) == keep

    def test_unknown_revoke_mode_rejected(self, consent_store):
        with pytest.raises(ValueError):
            ConsentAuthority(consent_store, revoke_mode="purge")

    @pytest.mark.parametrize("mode,racing_method", [
        ("mark", "mark_revoked"),
        ("delete", "find_by_id"),
    ])
    def test_concurrent_revokes_succeed_once(self, clock, t0, mode, racing_method):
        barrier = threading.Barrier(2, timeout=5)

        class RacingStore(InMemoryConsentStore):
            racing = False

        def wait_then_call(self, *args):
            if self.racing:
                barrier.wait()
            return getattr(InMemoryConsentStore, racing_method)(self, *args)

        setattr(RacingStore, racing_method, wait_then_call)
        store = RacingStore()
        authority = ConsentAuthority(store, clock=clock, revoke_mode=mode)
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)
        store.racing = True

        outcomes = []

        def revoke():
            try:
                authority.revoke(consent.id)
                outcomes.append("revoked")
            except NotFound:
                outcomes.append("not_found")

        threads = [threading.Thread(target=revoke) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["not_found", "revoked"]
        assert authority.find_active("P1", "VIEW", t0) is None

    def test_mark_revoked_is_conditional(self, consent_store, authority, t0):
        consent = authority.grant("P1", {"VIEW"}, t0, t0 + DAY)

        assert consent_store.mark_revoked(consent.id, t0).is_revoked
        assert consent_store.mark_revoked(consent.id, t0) is None
        assert consent_store.mark_revoked("missing", t0) is None
