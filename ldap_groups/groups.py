"""
Group entry lifecycle: create, delete, rename and list groups.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ldap_groups.config import DirectorySettings
from ldap_groups.logging_setup import audit_logger
from ldap_groups.paging import PagedSearchAccumulator
from ldap_groups.retry import RetryExecutor

logger = logging.getLogger(__name__)

GROUP_TYPE_GLOBAL = 0x00000002
GROUP_TYPE_SECURITY_ENABLED = 0x80000000

GROUP_OBJECT_FILTER = '(objectClass=group)'


def signed_group_type(flags: int) -> int:
    """Return ``flags`` as the signed 32-bit integer the directory stores."""
    return flags - (1 << 32) if flags & 0x80000000 else flags


class GroupLifecycleManager:
    """
    Creates, deletes and renames group entries below the users container.

    Deleting a group does not check whether it still has members; the
    directory removes the entry together with its member attribute.
    """

    def __init__(self, settings: DirectorySettings,
                 session_factory: Callable,
                 accumulator: Optional[PagedSearchAccumulator] = None,
                 retry_executor: Optional[RetryExecutor] = None):
        self.settings = settings
        self.session_factory = session_factory
        self.accumulator = accumulator or PagedSearchAccumulator(settings.page_size)
        self.retry_executor = retry_executor

    def group_attributes(self, cn: str) -> Dict[str, Any]:
        """Build the attribute set of a new security-enabled global group."""
        return {
            'objectClass': ['top', 'group'],
            'sAMAccountName': cn,
            'description': f"Group {cn} managed via LDAP",
            'groupType': str(signed_group_type(GROUP_TYPE_GLOBAL | GROUP_TYPE_SECURITY_ENABLED)),
            'mail': f"{cn.lower()}@{self.settings.mail_domain}",
            'displayName': cn,
            'managedBy': self.settings.admin_principal,
        }

    def create_group(self, cn: str) -> str:
        """
        Create the group ``cn`` and return its DN.

        Raises:
            AlreadyExistsError: If an entry already exists at the group's DN
        """
        dn = self.settings.object_dn(cn)
        attributes = self.group_attributes(cn)
        self._run(lambda session: session.create_entry(dn, attributes), 'create', dn)
        return dn

    def delete_group(self, cn: str) -> None:
        """
        Delete the group ``cn``.

        Raises:
            NotFoundError: If the group does not exist
        """
        dn = self.settings.object_dn(cn)
        self._run(lambda session: session.delete_entry(dn), 'delete', dn)

    def rename_group(self, old_cn: str, new_cn: str) -> str:
        """
        Rename the group ``old_cn`` to ``new_cn`` and return the new DN.

        Raises:
            NotFoundError: If the group does not exist
            AlreadyExistsError: If an entry already exists at the new DN
        """
        old_dn = self.settings.object_dn(old_cn)
        new_dn = self.settings.object_dn(new_cn)
        self._run(lambda session: session.rename(old_dn, new_dn), 'rename', f"{old_dn} -> {new_dn}")
        return new_dn

    def list_groups(self) -> List[str]:
        """Return the DNs of every group below the users container."""
        with self.session_factory() as session:
            groups = self.accumulator.collect_entry_dns(session, self.settings.users_dn,
                                                        GROUP_OBJECT_FILTER)
        logger.info(f"Found {len(groups)} groups in {self.settings.users_dn}")
        return groups

    def _run(self, action, operation: str, target: str) -> None:
        def attempt():
            with self.session_factory() as session:
                action(session)

        try:
            if self.retry_executor is not None:
                self.retry_executor.run_with_retry(attempt)
            else:
                attempt()
        except Exception:
            audit_logger.log_group_operation(operation, target, False)
            raise

        audit_logger.log_group_operation(operation, target, True)
        logger.info(f"Group {operation} succeeded: {target}")
