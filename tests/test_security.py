from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from jose import jwt

from absensi.errors import ApiError
from absensi.security import acting_user_from_claims, decode_token
from absensi.settings import Settings

TEST_SETTINGS = Settings(jwt_secret="test-secret-key-with-enough-length")


def _token(**overrides) -> str:
    claims = {
        "sub": "42",
        "role": "admin",
        "branch_id": 3,
        "iss": TEST_SETTINGS.jwt_issuer,
        "aud": TEST_SETTINGS.jwt_audience,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    claims.update(overrides)
    return jwt.encode(claims, TEST_SETTINGS.jwt_secret, algorithm="HS256")


@patch("absensi.security.get_settings", return_value=TEST_SETTINGS)
class TokenTests(unittest.TestCase):
    def test_valid_token_maps_to_acting_user(self, _settings) -> None:
        user = acting_user_from_claims(decode_token(_token()))

        self.assertEqual(user.user_id, "42")
        self.assertEqual(user.role, "admin")
        self.assertEqual(user.branch_id, 3)

    def test_expired_token_is_rejected(self, _settings) -> None:
        with self.assertRaises(ApiError) as ctx:
            decode_token(_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)))

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_wrong_audience_is_rejected(self, _settings) -> None:
        with self.assertRaises(ApiError):
            decode_token(_token(aud="someone-else"))


class ClaimsTests(unittest.TestCase):
    def test_branch_id_accepts_digit_strings(self) -> None:
        user = acting_user_from_claims({"sub": "7", "role": "employee", "branch_id": " 12 "})

        self.assertEqual(user.branch_id, 12)

    def test_missing_branch_and_role(self) -> None:
        user = acting_user_from_claims({"sub": "1"})

        self.assertIsNone(user.branch_id)
        self.assertEqual(user.role, "")

    def test_boolean_branch_id_is_ignored(self) -> None:
        user = acting_user_from_claims({"sub": "1", "role": "admin", "branch_id": True})

        self.assertIsNone(user.branch_id)


if __name__ == "__main__":
    unittest.main()
