import os
import sys
import unittest
import keyring
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from settings_schema import load_settings

class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1
    def __init__(self):
        self.store = {}
    def get_password(self, service, username):
        return self.store.get((service, username))
    def set_password(self, service, username, password):
        self.store[(service, username)] = password
    def delete_password(self, service, username):
        self.store.pop((service, username), None)

class SettingsEncryptionTest(unittest.TestCase):
    def setUp(self) -> None:
        keyring.set_keyring(DummyKeyring())
        os.environ['ENCRYPT_SETTINGS'] = '1'
        self.path = 'enc_settings.yaml'
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop('ENCRYPT_SETTINGS', None)
        os.environ.pop('TRAINEE_DB_PATH', None)

    def test_token_kept_out_of_file(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'api_token': 'secret', 'server_url': 'http://example.test/api'})
        with open(self.path, encoding='utf-8') as f:
            self.assertNotIn('secret', f.read())
        data = cfg.load()
        self.assertEqual(data['api_token'], 'secret')
        self.assertEqual(cfg.settings().server_url, 'http://example.test/api')

    def test_env_override_and_defaults(self) -> None:
        os.environ['TRAINEE_DB_PATH'] = 'override.db'
        settings = YamlConfig(self.path).settings()
        self.assertEqual(settings.db_path, 'override.db')
        self.assertEqual(settings.history_limit, 50)
        self.assertEqual(settings.fetch_cooldown_seconds, 86400)
        self.assertTrue(settings.use_server_data)

    def test_invalid_settings_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_settings({'history_limit': 0})
        with self.assertRaises(ValueError):
            load_settings({'request_timeout': 'soon'})

if __name__ == '__main__':
    unittest.main()
