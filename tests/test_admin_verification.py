import threading
import unittest
from unittest.mock import patch

from tests.fakes import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    OTP_SALT,
    SECURITY_CODE,
    RecordingDispatcher,
    build_service,
)

from admin_gate.services.admin_verification import VerificationError
from admin_gate.services.otp_service import otp_digest
from admin_gate.services.session_store import SessionLockTimeout, VerificationPhase

KEY = "session-key-a"


class AdminVerificationTests(unittest.TestCase):
    def setUp(self):
        self.service, self.store, self.dispatcher, self.clock, self.grants = build_service()

    def _reach_code_verified(self, key: str = KEY) -> str:
        self.assertTrue(self.service.submit_credentials(key, ADMIN_EMAIL, ADMIN_PASSWORD).ok)
        self.assertTrue(self.service.submit_security_code(key, SECURITY_CODE).ok)
        return self.dispatcher.last_code

    def test_operations_without_session_report_expired(self):
        for key in (None, "", "never-created"):
            self.assertEqual(
                self.service.submit_security_code(key, SECURITY_CODE).error, VerificationError.SESSION_EXPIRED
            )
            self.assertEqual(self.service.submit_one_time_code(key, "123456").error, VerificationError.SESSION_EXPIRED)
            self.assertEqual(self.service.resend_one_time_code(key).error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.dispatcher.attempts, 0)

    def test_valid_credentials_move_to_first_phase(self):
        result = self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD)
        self.assertTrue(result.ok)
        self.assertEqual(result.phase, VerificationPhase.CREDENTIALS_VERIFIED)
        state = self.store.get(KEY)
        self.assertEqual(state.phase, VerificationPhase.CREDENTIALS_VERIFIED)
        self.assertIsNone(state.otp_digest)

    def test_identity_is_trimmed_and_case_insensitive(self):
        result = self.service.submit_credentials(KEY, "  Admin@X.com ", ADMIN_PASSWORD)
        self.assertTrue(result.ok)

    def test_wrong_identity_and_wrong_secret_look_identical(self):
        wrong_identity = self.service.submit_credentials(KEY, "other@x.com", ADMIN_PASSWORD)
        wrong_secret = self.service.submit_credentials(KEY, ADMIN_EMAIL, "nope")
        self.assertEqual(wrong_identity, wrong_secret)
        self.assertEqual(wrong_identity.error, VerificationError.INVALID_CREDENTIALS)
        self.assertIsNone(self.store.get(KEY))

    def test_credentials_retry_resets_to_first_phase(self):
        self._reach_code_verified()
        again = self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD)
        self.assertTrue(again.ok)
        state = self.store.get(KEY)
        self.assertEqual(state.phase, VerificationPhase.CREDENTIALS_VERIFIED)
        self.assertIsNone(state.otp_digest)

    def test_failed_credentials_keep_existing_progress(self):
        self._reach_code_verified()
        before = self.store.get(KEY)
        result = self.service.submit_credentials(KEY, ADMIN_EMAIL, "wrong")
        self.assertFalse(result.ok)
        self.assertEqual(result.phase, VerificationPhase.CODE_VERIFIED)
        self.assertEqual(self.store.get(KEY), before)

    def test_scenario_wrong_then_right_security_code(self):
        self.assertTrue(self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD).ok)
        before = self.store.get(KEY)

        wrong = self.service.submit_security_code(KEY, "wrongcode")
        self.assertEqual(wrong.error, VerificationError.INVALID_CODE)
        self.assertEqual(self.store.get(KEY), before)
        self.assertEqual(self.dispatcher.attempts, 0)

        right = self.service.submit_security_code(KEY, "  rightcode ")
        self.assertTrue(right.ok)
        state = self.store.get(KEY)
        self.assertEqual(state.phase, VerificationPhase.CODE_VERIFIED)
        self.assertEqual(len(self.dispatcher.codes), 1)
        self.assertEqual(state.otp_digest, otp_digest(self.dispatcher.last_code, OTP_SALT))

    def test_issued_code_is_six_digits_and_never_stored_in_clear(self):
        code = self._reach_code_verified()
        self.assertRegex(code, r"^\d{6}$")
        state = self.store.get(KEY)
        self.assertNotIn(code, str(state.to_dict()))

    def test_delivery_failure_leaves_first_phase_intact(self):
        self.assertTrue(self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD).ok)
        before = self.store.get(KEY)
        self.dispatcher.succeed = False

        result = self.service.submit_security_code(KEY, SECURITY_CODE)
        self.assertEqual(result.error, VerificationError.DELIVERY_FAILED)
        self.assertEqual(result.phase, VerificationPhase.CREDENTIALS_VERIFIED)
        self.assertEqual(self.store.get(KEY), before)

        self.dispatcher.succeed = True
        self.assertTrue(self.service.submit_security_code(KEY, SECURITY_CODE).ok)

    def test_scenario_resend_invalidates_previous_code(self):
        first_code = self._reach_code_verified()
        first_digest = self.store.get(KEY).otp_digest

        self.clock.advance(61)
        resent = self.service.resend_one_time_code(KEY)
        self.assertTrue(resent.ok)
        second_code = self.dispatcher.last_code
        second_digest = self.store.get(KEY).otp_digest
        self.assertEqual(second_digest, otp_digest(second_code, OTP_SALT))

        if first_code != second_code:
            self.assertNotEqual(first_digest, second_digest)
            stale = self.service.submit_one_time_code(KEY, first_code)
            self.assertEqual(stale.error, VerificationError.INVALID_CODE)

        final = self.service.submit_one_time_code(KEY, second_code)
        self.assertTrue(final.ok)
        self.assertEqual(final.phase, VerificationPhase.AUTHENTICATED)
        self.assertEqual(final.session_token, "session-token-1")
        self.assertEqual(self.grants, ["session-token-1"])

    def test_resend_with_fixed_codes_rejects_old_one(self):
        codes = iter(["111111", "222222"])
        self.service.code_generator = lambda: next(codes)
        self._reach_code_verified()
        self.clock.advance(60)
        self.assertTrue(self.service.resend_one_time_code(KEY).ok)

        self.assertEqual(self.service.submit_one_time_code(KEY, "111111").error, VerificationError.INVALID_CODE)
        self.assertTrue(self.service.submit_one_time_code(KEY, "222222").ok)

    def test_resend_is_throttled_during_cooldown(self):
        self._reach_code_verified()
        before = self.store.get(KEY)
        self.clock.advance(20)

        throttled = self.service.resend_one_time_code(KEY)
        self.assertEqual(throttled.error, VerificationError.RESEND_THROTTLED)
        self.assertEqual(throttled.retry_after_seconds, 40)
        self.assertEqual(self.store.get(KEY), before)
        self.assertEqual(len(self.dispatcher.codes), 1)

    def test_resend_delivery_failure_keeps_previous_code(self):
        code = self._reach_code_verified()
        before = self.store.get(KEY)
        self.clock.advance(90)
        self.dispatcher.succeed = False

        result = self.service.resend_one_time_code(KEY)
        self.assertEqual(result.error, VerificationError.DELIVERY_FAILED)
        self.assertEqual(self.store.get(KEY), before)
        self.assertTrue(self.service.submit_one_time_code(KEY, code).ok)

    def test_wrong_one_time_code_allows_retry(self):
        code = self._reach_code_verified()
        before = self.store.get(KEY)
        wrong = "000000" if code != "000000" else "999999"

        result = self.service.submit_one_time_code(KEY, wrong)
        self.assertEqual(result.error, VerificationError.INVALID_CODE)
        self.assertEqual(self.store.get(KEY), before)
        self.assertEqual(self.grants, [])

        self.assertTrue(self.service.submit_one_time_code(KEY, f" {code} ").ok)

    def test_success_clears_intermediate_state(self):
        code = self._reach_code_verified()
        self.assertTrue(self.service.submit_one_time_code(KEY, code).ok)
        self.assertIsNone(self.store.get(KEY))
        self.assertEqual(self.service.status(KEY).phase, VerificationPhase.NONE)
        replay = self.service.submit_one_time_code(KEY, code)
        self.assertEqual(replay.error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(len(self.grants), 1)

    def test_scenario_first_phase_expires(self):
        self.assertTrue(self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD).ok)
        self.clock.advance(301)
        result = self.service.submit_security_code(KEY, SECURITY_CODE)
        self.assertEqual(result.error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.dispatcher.attempts, 0)

    def test_one_time_code_rejected_after_ttl(self):
        code = self._reach_code_verified()
        self.clock.advance(300)
        self.assertEqual(self.service.submit_one_time_code(KEY, code).error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.service.resend_one_time_code(KEY).error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.grants, [])

    def test_phases_cannot_be_skipped(self):
        self.assertTrue(self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD).ok)
        self.assertEqual(self.service.submit_one_time_code(KEY, "123456").error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.service.resend_one_time_code(KEY).error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(self.store.get(KEY).phase, VerificationPhase.CREDENTIALS_VERIFIED)

        self.assertTrue(self.service.submit_security_code(KEY, SECURITY_CODE).ok)
        again = self.service.submit_security_code(KEY, SECURITY_CODE)
        self.assertEqual(again.error, VerificationError.SESSION_EXPIRED)
        self.assertEqual(len(self.dispatcher.codes), 1)

    def test_sessions_are_isolated(self):
        code = self._reach_code_verified("key-one")
        self.assertTrue(self.service.submit_credentials("key-two", ADMIN_EMAIL, ADMIN_PASSWORD).ok)

        self.assertEqual(
            self.service.submit_one_time_code("key-two", code).error, VerificationError.SESSION_EXPIRED
        )
        self.assertEqual(self.store.get("key-one").phase, VerificationPhase.CODE_VERIFIED)
        self.assertEqual(self.store.get("key-two").phase, VerificationPhase.CREDENTIALS_VERIFIED)

    def test_status_reports_phase_and_remaining_time(self):
        self.assertEqual(self.service.status(None).phase, VerificationPhase.NONE)
        self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD)
        self.clock.advance(100)
        current = self.service.status(KEY)
        self.assertEqual(current.phase, VerificationPhase.CREDENTIALS_VERIFIED)
        self.assertEqual(current.expires_in_seconds, 200)

    def test_discard_drops_pending_state(self):
        self._reach_code_verified()
        self.service.discard(KEY)
        self.assertIsNone(self.store.get(KEY))

    def test_busy_session_lock_reports_busy_without_side_effects(self):
        self._reach_code_verified()
        before = self.store.get(KEY)
        with patch.object(self.store, "lock", side_effect=SessionLockTimeout("held")):
            results = [
                self.service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD),
                self.service.submit_security_code(KEY, SECURITY_CODE),
                self.service.submit_one_time_code(KEY, self.dispatcher.last_code),
                self.service.resend_one_time_code(KEY),
            ]
        for result in results:
            self.assertFalse(result.ok)
            self.assertEqual(result.error, VerificationError.SESSION_BUSY)
            self.assertEqual(result.phase, VerificationPhase.CODE_VERIFIED)
        self.assertEqual(self.store.get(KEY), before)
        self.assertEqual(len(self.dispatcher.codes), 1)
        self.assertEqual(self.grants, [])

    def test_discard_drops_state_even_when_lock_is_busy(self):
        self._reach_code_verified()
        with patch.object(self.store, "lock", side_effect=SessionLockTimeout("held")):
            self.service.discard(KEY)
        self.assertIsNone(self.store.get(KEY))

    def test_concurrent_submit_and_resend_keep_digest_consistent(self):
        service, store, dispatcher, _, _ = build_service(
            dispatcher=RecordingDispatcher(), resend_cooldown_seconds=0
        )
        service.submit_credentials(KEY, ADMIN_EMAIL, ADMIN_PASSWORD)
        service.submit_security_code(KEY, SECURITY_CODE)
        stale_code = dispatcher.last_code

        threads = [
            threading.Thread(target=service.submit_one_time_code, args=(KEY, "not-a-code")),
            threading.Thread(target=service.resend_one_time_code, args=(KEY,)),
            threading.Thread(target=service.submit_one_time_code, args=(KEY, "still-not-a-code")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        state = store.get(KEY)
        self.assertIsNotNone(state)
        self.assertEqual(len(dispatcher.codes), 2)
        self.assertEqual(state.otp_digest, otp_digest(dispatcher.last_code, OTP_SALT))
        if stale_code != dispatcher.last_code:
            self.assertFalse(service.submit_one_time_code(KEY, stale_code).ok)


if __name__ == "__main__":
    unittest.main()
