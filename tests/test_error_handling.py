import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from session_keeper.error_handling import (  # noqa: E402
    FailureKind,
    RefreshFailedError,
    SessionInvalidError,
    classify_auth_failure,
    describe_error,
    extract_message,
    is_auth_error_detail,
)


class ErrorHandlingTests(unittest.TestCase):
    def test_classify(self) -> None:
        self.assertEqual(classify_auth_failure(401, "Unauthorized"), FailureKind.TRANSIENT)
        self.assertEqual(classify_auth_failure(401, None), FailureKind.TRANSIENT)
        self.assertEqual(classify_auth_failure(401, "Invalid token"), FailureKind.TERMINAL)
        self.assertEqual(classify_auth_failure(401, "TOKEN EXPIRED, please log in"), FailureKind.TERMINAL)
        self.assertEqual(classify_auth_failure(403, "Invalid token"), FailureKind.NOT_AUTH)
        self.assertEqual(classify_auth_failure(None), FailureKind.NOT_AUTH)

    def test_auth_error_detail(self) -> None:
        self.assertTrue(is_auth_error_detail({"status": 401}))
        self.assertTrue(is_auth_error_detail({"status": 400, "message": "Token expired"}))
        self.assertFalse(is_auth_error_detail({"status": 500, "message": "Server error"}))
        self.assertFalse(is_auth_error_detail(None))

    def test_extract_message(self) -> None:
        self.assertEqual(extract_message({"message": "Invalid token"}), "Invalid token")
        self.assertEqual(extract_message({"error": "Bad"}), "Bad")
        self.assertEqual(extract_message({"message": 42}), "")
        self.assertEqual(extract_message(["x"]), "")

    def test_describe_error(self) -> None:
        self.assertEqual(describe_error(403), "Access denied. You do not have permission.")
        self.assertEqual(describe_error(418), "An unexpected error occurred.")
        self.assertEqual(describe_error(None), "Network error. Please check your connection.")
        self.assertEqual(describe_error(500, "Database down"), "Database down")

    def test_session_errors_carry_code_and_status(self) -> None:
        err = RefreshFailedError("Refresh token expired", status=401)
        self.assertEqual(err.code, "ERR_REFRESH_FAILED")
        self.assertEqual(err.status, 401)
        self.assertEqual(str(err), "Refresh token expired")

        invalid = SessionInvalidError()
        self.assertEqual(invalid.code, "ERR_SESSION_INVALID")
        self.assertEqual(invalid.message, "Your session has expired. Please log in again.")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
