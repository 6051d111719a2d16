"""API key storage: process environment first, then the project's .env file."""

import os

from dotenv import dotenv_values, set_key

API_KEY_NAME = "OPENAI_API_KEY"


def _default_env_path():
    return os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")


class EnvKeyStore:
    def __init__(self, env_path: str | None = None):
        self.env_path = env_path or _default_env_path()

    def get(self, name: str = API_KEY_NAME) -> str | None:
        value = os.environ.get(name)
        if value:
            return value
        if os.path.isfile(self.env_path):
            return dotenv_values(self.env_path).get(name) or None
        return None

    def set(self, name: str, value: str) -> None:
        """Store the credential in .env so later processes see it, and in this process's environment."""
        if not os.path.isfile(self.env_path):
            os.makedirs(os.path.dirname(self.env_path) or ".", exist_ok=True)
            open(self.env_path, "a", encoding="utf-8").close()
        set_key(self.env_path, name, value)
        os.environ[name] = value
