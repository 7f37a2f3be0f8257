import os
import yaml
import keyring

from settings_schema import SettingsSchema, load_settings

ENV_OVERRIDES = {
    "TRAINEE_DB_PATH": "db_path",
    "TRAINEE_SERVER_URL": "server_url",
    "TRAINEE_LOG_LEVEL": "log_level",
}


class YamlConfig:
    """Settings stored in a YAML file; the API token can live in the keyring.

    With ``ENCRYPT_SETTINGS=1`` sensitive values are written to the system
    keyring and the file only records that a secret exists.
    """

    SENSITIVE_KEYS = {"api_token"}
    KEYRING_SERVICE = "trainee-session"

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"

    def _read_file(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}

    def load(self) -> dict:
        data = self._read_file()
        if not self.encrypt:
            return data
        for key in self.SENSITIVE_KEYS & data.keys():
            secret = keyring.get_password(self.KEYRING_SERVICE, key)
            if secret is None:
                data.pop(key)
            else:
                data[key] = secret
        return data

    def save(self, data: dict) -> None:
        out = {k: v for k, v in data.items() if v is not None}
        if self.encrypt:
            for key in self.SENSITIVE_KEYS & out.keys():
                keyring.set_password(self.KEYRING_SERVICE, key, str(out[key]))
                out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def settings(self) -> SettingsSchema:
        """Validated settings; ``TRAINEE_*`` environment variables win over the file."""
        data = self.load()
        for env, key in ENV_OVERRIDES.items():
            if os.environ.get(env):
                data[key] = os.environ[env]
        return load_settings(data)
