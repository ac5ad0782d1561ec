import os
import unittest
from unittest.mock import patch

from config_manager import AppConfig, TokenCipher


class TestTokenCipher(unittest.TestCase):
    def test_encrypts_and_decrypts(self):
        cipher = TokenCipher("secret-one")
        encrypted = cipher.encrypt_token("gho_abc")
        self.assertNotIn("gho_abc", encrypted)
        self.assertEqual(cipher.decrypt_token(encrypted), "gho_abc")

    def test_rotated_secret_cannot_decrypt(self):
        encrypted = TokenCipher("secret-one").encrypt_token("gho_abc")
        self.assertIsNone(TokenCipher("secret-two").decrypt_token(encrypted))

    def test_nothing_stored(self):
        self.assertIsNone(TokenCipher("secret-one").decrypt_token(None))

    def test_requires_secret_and_token(self):
        with self.assertRaises(ValueError):
            TokenCipher("")
        with self.assertRaises(ValueError):
            TokenCipher("secret-one").encrypt_token("")


class TestAppConfig(unittest.TestCase):
    @patch.dict(os.environ, {"OMNILENS_ENV": "test", "SECRET_KEY": "s3cret", "MAX_RUN_PAGES": "4",
                             "GITHUB_API_BASE": "https://ghe.example/api/v3/"}, clear=True)
    def test_from_env(self):
        config = AppConfig.from_env(env_file=os.devnull)
        self.assertEqual(config.environment, "test")
        self.assertEqual(config.base_url, "http://localhost")
        self.assertEqual(config.max_run_pages, 4)
        self.assertEqual(config.github_api_base, "https://ghe.example/api/v3")
        self.assertFalse(config.oauth_configured)

    @patch.dict(os.environ, {"OMNILENS_ENV": "production"}, clear=True)
    def test_production_requires_secret(self):
        with self.assertRaises(RuntimeError):
            AppConfig.from_env(env_file=os.devnull)

    @patch.dict(os.environ, {"OMNILENS_ENV": "production", "SECRET_KEY": "s3cret"}, clear=True)
    def test_production_requires_base_url(self):
        with self.assertRaises(RuntimeError):
            AppConfig.from_env(env_file=os.devnull)

    @patch.dict(os.environ, {"OMNILENS_ENV": "production", "MAX_RUN_PAGES": "2"}, clear=True)
    def test_github_client_settings_need_no_web_settings(self):
        config = AppConfig.github_client_from_env(env_file=os.devnull)
        self.assertEqual(config.environment, "production")
        self.assertEqual(config.max_run_pages, 2)
        self.assertEqual(config.github_api_base, "https://api.github.com")

    def test_callback_url(self):
        config = AppConfig(secret_key="x", base_url="https://omnilens.example/",
                           github_client_id="id", github_client_secret="secret")
        self.assertEqual(config.oauth_callback_url, "https://omnilens.example/auth/github/callback")
        self.assertTrue(config.oauth_configured)


if __name__ == '__main__':
    unittest.main()
