import logging
import os
import re
import threading
import uuid
from typing import Dict, Iterable, Optional

from ..errors import ValidationError


ENV_PREFIX = "env:"

_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.\-]*://)(?P<user>[^:/@\s]+):(?P<secret>[^@\s]+)@", re.I)


class SecretStore:
    """Keeps credential values behind opaque references.

    Values are held in process memory. A reference of the form ``env:NAME``
    is resolved from the environment instead, which lets deployments keep
    secrets out of the user data database entirely.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._secrets: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, value: str) -> str:
        if value.startswith(ENV_PREFIX):
            return value
        ref = f"cred-{uuid.uuid4().hex}"
        with self._lock:
            self._secrets[ref] = value
        self.logger.debug(f"Stored credential under {ref}")
        return ref

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        if ref is None:
            return None
        if ref.startswith(ENV_PREFIX):
            name = ref[len(ENV_PREFIX):]
            value = os.environ.get(name)
            if value is None:
                raise ValidationError(f"Credential environment variable {name} is not set")
            return value
        with self._lock:
            if ref not in self._secrets:
                raise ValidationError("Credential reference is unknown; re-register the connection")
            return self._secrets[ref]

    def discard(self, ref: Optional[str]) -> None:
        if ref is None:
            return
        with self._lock:
            self._secrets.pop(ref, None)


def redact(message: str, secrets: Iterable[str] = ()) -> str:
    """Strip credentials from a driver or URL-bearing message."""
    redacted = _URL_CREDENTIALS.sub(lambda m: f"{m.group('scheme')}{m.group('user')}:***@", message)
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "***")
    return redacted
