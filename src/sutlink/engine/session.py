"""Opening authenticated sessions for transactions and transfers"""

import logging
from typing import Optional

from sutlink.transport.base import RemoteSession, SessionError, SessionProvider, SessionTemplate

logger = logging.getLogger(__name__)

DEFAULT_USER = "root"


def open_session(provider: SessionProvider, template: SessionTemplate,
                 username: Optional[str] = None) -> Optional[RemoteSession]:
    """Open a new session as some user

    Only unattended public key authentication is attempted. Do not use keys
    without passphrase to reach production systems.

    Args:
        provider: Session provider
        template: Per-target connection template
        username: Remote user (default: root)

    Returns:
        Authenticated session, or None on any failure
    """
    if not username:
        username = DEFAULT_USER

    try:
        session = provider.open(template.copy(user=username))
    except SessionError as e:
        logger.error(f"Cannot create session for {template.host}: {e}")
        return None

    try:
        session.connect()
        if not session.authenticate(username):
            raise SessionError(f"public key authentication as {username} refused")
    except SessionError as e:
        logger.error(f"Cannot open session to {template.host}: {e}")
        session.disconnect()
        return None

    return session
