from __future__ import annotations

import logging

from ami_orch.core.models import Credentials
from ami_orch.errors import CredentialsError

logger = logging.getLogger("ami.credentials")

KEY_ID = "ACCESS_KEY_ID"
KEY_SECRET = "ACCESS_KEY_SECRET"


def load_credentials(path: str) -> Credentials:
    """
    Load an access key pair from a key file.

    File format: newline-terminated ``KEY=value`` lines, exactly one
    ``ACCESS_KEY_ID`` and one ``ACCESS_KEY_SECRET``. Any other line
    (unknown key, no '=', blank) is an error. A final line without a
    newline is ignored with a warning.

    Raises:
        CredentialsError: unreadable file, bad line, duplicate key or missing key
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialsError(f"Cannot read AWS keys from {path}: {e}") from e

    values: dict[str, str] = {}
    lines = text.split("\n")
    unterminated = lines.pop()
    if unterminated:
        logger.warning(f"Missing EOL in {path}")

    for line in lines:
        line = line.rstrip("\r")
        key, sep, value = line.partition("=")
        if not sep or key not in (KEY_ID, KEY_SECRET):
            raise CredentialsError(f"Lines in {path} must be ACCESS_KEY_(ID|SECRET)=...")
        if key in values:
            raise CredentialsError(f"{key} specified twice")
        values[key] = value

    if KEY_ID not in values or KEY_SECRET not in values:
        raise CredentialsError("Need ACCESS_KEY_ID and ACCESS_KEY_SECRET")

    return Credentials(access_key_id=values[KEY_ID], access_key_secret=values[KEY_SECRET])
