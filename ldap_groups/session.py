"""
Scoped directory sessions.

A DirectorySession wraps one bound ldap3 connection for the duration of a
single logical operation. Every call maps non-success results and ldap3
exceptions into the error kinds of ``ldap_groups.errors``, and the session is
always released when the ``with`` block exits.
"""

import logging
import ssl
from typing import Any, Dict, List, Optional, Sequence

from ldap3 import Server, Connection, Tls, BASE, SUBTREE, NONE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.dn import parse_dn, safe_rdn

from ldap_groups.config import DirectorySettings
from ldap_groups.errors import (
    FatalDirectoryError,
    ensure_valid_dn,
    raise_for_result,
    translate_exception,
)

logger = logging.getLogger(__name__)

SEARCH_RESULT_ENTRY = 'searchResEntry'


class DirectorySession:
    """
    Single-use handle on a bound directory connection.

    Sessions are not pooled or shared. Use as a context manager::

        with DirectorySession.connect(settings) as session:
            session.delete_entry(dn)
    """

    def __init__(self, connection: Connection):
        """
        Wrap an already opened and bound ldap3 connection.

        Args:
            connection: Bound ldap3 Connection owned by this session
        """
        self.connection = connection
        self._request_controls = None
        self._closed = False

    @classmethod
    def connect(cls, settings: DirectorySettings) -> 'DirectorySession':
        """
        Open and bind a new session using the configured admin principal.

        Raises:
            TransientDirectoryError: If the server cannot be reached
            FatalDirectoryError: If TLS setup or the bind fails
        """
        tls_config = _create_tls_config(settings)
        server = Server(
            settings.provider_url,
            use_ssl=settings.use_ssl,
            tls=tls_config,
            get_info=NONE,
            connect_timeout=settings.connection_timeout
        )
        connection = Connection(
            server,
            user=settings.admin_principal,
            password=settings.bind_password,
            auto_bind=False,
            receive_timeout=settings.receive_timeout
        )

        try:
            connection.open()
            if settings.start_tls and not settings.use_ssl:
                if not connection.start_tls():
                    raise FatalDirectoryError(f"Failed to start TLS: {connection.result}")
            if not connection.bind():
                raise FatalDirectoryError(f"Bind failed for {settings.admin_principal}: "
                                          f"{connection.result.get('description')}")
        except LDAPException as e:
            _unbind_quietly(connection)
            raise translate_exception(e, f"Connect to {settings.provider_url}")
        except FatalDirectoryError:
            _unbind_quietly(connection)
            raise

        logger.debug(f"Opened directory session to {settings.provider_url}")
        return cls(connection)

    def set_request_controls(self, controls: Optional[Sequence[Any]]) -> None:
        """Attach ``controls`` to the next search request only."""
        self._request_controls = list(controls) if controls else None

    def get_response_controls(self) -> Dict[str, Any]:
        """Return the controls of the last response, keyed by OID."""
        result = self.connection.result or {}
        return result.get('controls') or {}

    def search(self, base: str, search_filter: str, scope: str = SUBTREE,
               attributes: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """
        Search the directory.

        Args:
            base: Search base DN
            search_filter: LDAP filter string
            scope: ``BASE`` or ``SUBTREE``
            attributes: Attributes to return

        Returns:
            Result entries as dictionaries with ``dn`` and ``attributes`` keys
        """
        ensure_valid_dn(base)
        controls, self._request_controls = self._request_controls, None
        operation = f"Search {base} {search_filter}"

        try:
            self.connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=list(attributes) if attributes else None,
                controls=controls
            )
        except LDAPException as e:
            raise translate_exception(e, operation)

        # ldap3 reports False for an empty result set, so the result code decides
        raise_for_result(self.connection.result, operation)
        return [entry for entry in (self.connection.response or [])
                if entry.get('type') == SEARCH_RESULT_ENTRY]

    def modify(self, dn: str, changes: Dict[str, List[Any]]) -> None:
        """Apply ``changes`` (ldap3 modify format) to the entry at ``dn`` atomically."""
        ensure_valid_dn(dn)
        self._call(f"Modify {dn}", self.connection.modify, dn, changes)

    def create_entry(self, dn: str, attributes: Dict[str, Any]) -> None:
        """Create a new entry at ``dn``."""
        ensure_valid_dn(dn)
        self._call(f"Create {dn}", self.connection.add, dn, attributes=attributes)

    def delete_entry(self, dn: str) -> None:
        """Delete the entry at ``dn``."""
        ensure_valid_dn(dn)
        self._call(f"Delete {dn}", self.connection.delete, dn)

    def rename(self, old_dn: str, new_dn: str) -> None:
        """
        Atomically rename the entry at ``old_dn`` to ``new_dn``.

        The entry is moved under a new parent when the parents differ.
        """
        ensure_valid_dn(old_dn)
        ensure_valid_dn(new_dn)
        new_rdn = '+'.join(safe_rdn(new_dn))
        new_parent = _parent_dn(new_dn)
        new_superior = new_parent if _parent_dn(old_dn).lower() != new_parent.lower() else None

        self._call(f"Rename {old_dn} to {new_dn}", self.connection.modify_dn,
                   old_dn, new_rdn, new_superior=new_superior)

    def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self.connection.unbind()
            logger.debug("Directory session closed")
        except LDAPException as e:
            logger.warning(f"Error closing directory session: {e}")

    def _call(self, operation: str, method, *args, **kwargs) -> None:
        try:
            method(*args, **kwargs)
        except LDAPException as e:
            raise translate_exception(e, operation)
        raise_for_result(self.connection.result, operation)
        logger.debug(f"{operation} succeeded")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def _create_tls_config(settings: DirectorySettings) -> Optional[Tls]:
    """
    Create TLS configuration for the directory connection.

    Returns:
        Tls configuration object or None if not needed
    """
    if not (settings.use_ssl or settings.start_tls):
        return None

    tls_config = {}

    if not settings.verify_ssl:
        tls_config['validate'] = ssl.CERT_NONE
        logger.warning("SSL certificate verification disabled")
    else:
        tls_config['validate'] = ssl.CERT_REQUIRED

    if settings.ca_cert_file:
        tls_config['ca_certs_file'] = settings.ca_cert_file
        logger.debug(f"Using CA certificate file: {settings.ca_cert_file}")

    try:
        return Tls(**tls_config)
    except LDAPException as e:
        raise FatalDirectoryError(f"Failed to create TLS configuration: {e}")


def _parent_dn(dn: str) -> str:
    components = parse_dn(dn, escape=True)
    # skip the (possibly multi-valued) leading RDN
    start = 0
    while start < len(components) and components[start][2] == '+':
        start += 1
    return ','.join(f"{attr}={value}" for attr, value, _ in components[start + 1:])


def _unbind_quietly(connection: Connection) -> None:
    try:
        connection.unbind()
    except LDAPException as e:
        logger.debug(f"Ignoring error while discarding connection: {e}")


__all__ = ['DirectorySession', 'BASE', 'SUBTREE']
