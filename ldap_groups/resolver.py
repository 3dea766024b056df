"""
Common name to distinguished name resolution for user entries.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ldap3 import SUBTREE
from ldap3.utils.conv import escape_filter_chars

from ldap_groups.config import DirectorySettings
from ldap_groups.errors import AmbiguousNameError, NotFoundError, PartialNotFoundError
from ldap_groups.paging import PagedSearchAccumulator, attribute_values

logger = logging.getLogger(__name__)

USER_OBJECT_FILTER = '(objectClass=user)'


class IdentifierResolver:
    """
    Resolves user CNs to DNs below the configured users container.

    A CN matching more than one entry is rejected with AmbiguousNameError.
    """

    def __init__(self, settings: DirectorySettings,
                 accumulator: Optional[PagedSearchAccumulator] = None):
        self.settings = settings
        self.accumulator = accumulator or PagedSearchAccumulator(settings.page_size)

    def resolve_one(self, session, cn: str) -> str:
        """
        Resolve a single user CN.

        Raises:
            NotFoundError: If no user has this CN
            AmbiguousNameError: If several users have this CN
        """
        search_filter = f"(&{USER_OBJECT_FILTER}(cn={escape_filter_chars(cn)}))"
        entries = session.search(self.settings.users_dn, search_filter,
                                 scope=SUBTREE, attributes=['cn'])

        if not entries:
            raise NotFoundError(f"User with CN '{cn}' not found")
        if len(entries) > 1:
            raise AmbiguousNameError(cn, [entry['dn'] for entry in entries])

        logger.debug(f"Resolved {cn} to {entries[0]['dn']}")
        return entries[0]['dn']

    def resolve_many(self, session, cns: Sequence[str]) -> List[str]:
        """
        Resolve many user CNs with a single OR-filtered search.

        The search follows server paging, so lists longer than the server's
        size limit still resolve.

        Returns:
            DNs in the same order as ``cns``

        Raises:
            PartialNotFoundError: Naming every CN that did not resolve
            AmbiguousNameError: If a CN matches several users
        """
        cns = list(cns)
        if not cns:
            return []

        name_filters = ''.join(f"(cn={escape_filter_chars(cn)})" for cn in cns)
        search_filter = f"(&{USER_OBJECT_FILTER}(|{name_filters}))"
        entries = []
        for page in self.accumulator.iter_pages(session, self.settings.users_dn, search_filter,
                                                scope=SUBTREE, attributes=['cn']):
            entries.extend(page)

        matches: Dict[str, List[str]] = {}
        for entry in entries:
            for name in attribute_values(entry, 'cn'):
                matches.setdefault(_text(name).lower(), []).append(entry['dn'])

        missing = []
        for cn in cns:
            if cn.lower() not in matches and cn not in missing:
                missing.append(cn)
        if missing:
            raise PartialNotFoundError(missing)

        dns = []
        for cn in cns:
            found = matches[cn.lower()]
            if len(found) > 1:
                raise AmbiguousNameError(cn, found)
            dns.append(found[0])

        logger.info(f"Resolved {len(dns)} user CNs in one paged search")
        return dns


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return str(value)
