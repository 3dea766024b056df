"""
Paged retrieval of large result sets.

Directory servers cap how many values or entries they return per request.
The accumulator drives the simple paged results control
(OID 1.2.840.113556.1.4.319) until the server hands back an empty cookie,
consuming pages strictly in the order the cookies are issued.
"""

import enum
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ldap3 import BASE, SUBTREE
from ldap3.protocol.rfc2696 import paged_search_control

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'
DEFAULT_PAGE_SIZE = 1000
MEMBER_ATTRIBUTE = 'member'


class PagingState(enum.Enum):
    FETCHING_PAGE = 'fetching_page'
    DONE = 'done'


def extract_cookie(response_controls: Dict[str, Any]) -> Optional[bytes]:
    """Return the continuation cookie from the response controls, if any."""
    control = (response_controls or {}).get(PAGED_RESULTS_OID)
    if not control:
        return None
    return (control.get('value') or {}).get('cookie')


def attribute_values(entry: Dict[str, Any], attribute: str) -> List[Any]:
    """
    Return the values of ``attribute`` on a search result entry.

    Attribute names are matched case-insensitively; a missing attribute
    yields an empty list.
    """
    attributes = entry.get('attributes') or {}
    wanted = attribute.lower()
    for name, values in attributes.items():
        if name.lower() == wanted:
            if values is None:
                return []
            if isinstance(values, (list, tuple)):
                return list(values)
            return [values]
    return []


class PagedSearchAccumulator:
    """
    Accumulates paged search results from a DirectorySession.

    The first request is always issued; the returned cookie is only inspected
    after a page has been consumed, and an empty or absent cookie ends the
    loop. Any search error propagates and no partial result is returned.
    """

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.page_size = page_size

    def iter_pages(self, session, base: str, search_filter: str,
                   scope: str = SUBTREE,
                   attributes: Optional[Sequence[str]] = None) -> Iterator[List[Dict[str, Any]]]:
        """
        Yield the entries of each page, in server cookie order.

        Args:
            session: Open DirectorySession
            base: Search base DN
            search_filter: LDAP filter string
            scope: ``BASE`` or ``SUBTREE``
            attributes: Attributes to return
        """
        state = PagingState.FETCHING_PAGE
        cookie = None
        page_number = 0

        while state is PagingState.FETCHING_PAGE:
            page_number += 1
            session.set_request_controls([
                paged_search_control(False, self.page_size, cookie)
            ])
            entries = session.search(base, search_filter, scope=scope, attributes=attributes)
            logger.debug(f"Page {page_number} of {base}: {len(entries)} entries")
            yield entries

            cookie = extract_cookie(session.get_response_controls())
            if not cookie:
                state = PagingState.DONE

        logger.debug(f"Paged search of {base} finished after {page_number} pages")

    def _iter_object_values(self, session, dn: str, attribute: str) -> Iterator[List[Any]]:
        for entries in self.iter_pages(session, dn, '(objectClass=*)', scope=BASE,
                                       attributes=[attribute]):
            # object-level scope returns at most the target entry itself
            yield attribute_values(entries[0], attribute) if entries else []

    def collect_values(self, session, dn: str, attribute: str = MEMBER_ATTRIBUTE) -> List[Any]:
        """Return every value of ``attribute`` on the entry at ``dn``, in page order."""
        values = []
        for page_values in self._iter_object_values(session, dn, attribute):
            values.extend(page_values)
        logger.info(f"Retrieved {len(values)} {attribute} values from {dn}")
        return values

    def count_values(self, session, dn: str, attribute: str = MEMBER_ATTRIBUTE) -> int:
        """Return the number of values of ``attribute`` on the entry at ``dn``."""
        total = 0
        for page_values in self._iter_object_values(session, dn, attribute):
            total += len(page_values)
        logger.info(f"Counted {total} {attribute} values on {dn}")
        return total

    def collect_entry_dns(self, session, base: str, search_filter: str) -> List[str]:
        """Return the DNs of every entry matching ``search_filter`` below ``base``."""
        dns = []
        for entries in self.iter_pages(session, base, search_filter, scope=SUBTREE):
            dns.extend(entry['dn'] for entry in entries)
        return dns
