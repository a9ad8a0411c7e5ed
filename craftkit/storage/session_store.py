"""
Persists the account session as a single JSON record.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from craftkit.models.session import AuthSession

from .instance import write_json_atomic

log = logging.getLogger(__name__)


class SessionStore:
    """
    Reads and writes `AuthSession` records. A missing, unreadable or invalid
    file is treated as "no session" rather than an error.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[AuthSession]:
        try:
            with open(self.path, encoding="utf-8") as f:
                return AuthSession.model_validate(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            log.warning(f"[yellow]Ignoring unreadable session file:[/yellow] {e}")
            return None

    def save(self, session: AuthSession) -> None:
        write_json_atomic(self.path, session.model_dump(mode="json"))
        try:
            self.path.chmod(0o600)
        except OSError as e:
            log.debug(f"Could not restrict session file permissions: {e}")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
