#!/usr/bin/env python3
"""
Unit tests for the paged search accumulator.
"""

import os
import sys
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import BASE, SUBTREE

from ldap_groups.errors import NotFoundError
from ldap_groups.paging import (
    PAGED_RESULTS_OID, PagedSearchAccumulator, attribute_values, extract_cookie
)
from mock_directory import mock_session, search_entry

GROUP_DN = 'CN=sales,CN=Users,DC=sandbox,DC=local'


def paging_controls(cookie):
    return {PAGED_RESULTS_OID: {'description': 'Paged results', 'criticality': False,
                                'value': {'size': 0, 'cookie': cookie}}}


def member_page(start, count):
    members = [f"CN=user{i:05d},CN=Users,DC=sandbox,DC=local" for i in range(start, start + count)]
    return [search_entry(GROUP_DN, member=members)]


def request_control(controls):
    """Return the OID and encoded value of the paged results control in ``controls``."""
    control = controls[0]
    return str(control['controlType']), control['controlValue'].asOctets()


class TestCookieHelpers(unittest.TestCase):

    def test_extract_cookie(self):
        self.assertEqual(extract_cookie(paging_controls(b'abc')), b'abc')
        self.assertEqual(extract_cookie(paging_controls(b'')), b'')
        self.assertIsNone(extract_cookie({}))
        self.assertIsNone(extract_cookie(None))

    def test_attribute_values(self):
        entry = search_entry(GROUP_DN, Member=['a', 'b'])
        self.assertEqual(attribute_values(entry, 'member'), ['a', 'b'])
        self.assertEqual(attribute_values(search_entry(GROUP_DN), 'member'), [])
        self.assertEqual(attribute_values(search_entry(GROUP_DN, mail='x@y'), 'mail'), ['x@y'])


class TestPagedSearchAccumulator(unittest.TestCase):
    """Test cases for PagedSearchAccumulator."""

    def setUp(self):
        self.accumulator = PagedSearchAccumulator(page_size=1000)

    def test_three_pages_of_members(self):
        session = mock_session(
            search_results=[member_page(0, 1000), member_page(1000, 1000), member_page(2000, 500)],
            response_controls=[paging_controls(b'c1'), paging_controls(b'c2'), paging_controls(b'')]
        )

        members = self.accumulator.collect_values(session, GROUP_DN)

        self.assertEqual(len(members), 2500)
        self.assertEqual(members[0], 'CN=user00000,CN=Users,DC=sandbox,DC=local')
        self.assertEqual(members[-1], 'CN=user02499,CN=Users,DC=sandbox,DC=local')
        self.assertEqual(session.search.call_count, 3)

        sent = [request_control(call.args[0]) for call in session.set_request_controls.call_args_list]
        self.assertEqual(len(sent), 3)
        self.assertTrue(all(oid == PAGED_RESULTS_OID for oid, _ in sent))

    def test_each_cookie_is_sent_with_the_next_request(self):
        session = mock_session(
            search_results=[member_page(0, 2), member_page(2, 2), member_page(4, 1)],
            response_controls=[paging_controls(b'c1'), paging_controls(b'c2'), paging_controls(b'')]
        )
        sent_cookies = []

        def record_controls(controls):
            sent_cookies.append(request_control(controls)[1])

        session.set_request_controls.side_effect = record_controls
        accumulator = PagedSearchAccumulator(page_size=2)

        accumulator.collect_values(session, GROUP_DN)

        # first request has no cookie, then c1, then c2
        self.assertEqual(len(sent_cookies), 3)
        self.assertNotIn(b'c1', sent_cookies[0])
        self.assertIn(b'c1', sent_cookies[1])
        self.assertIn(b'c2', sent_cookies[2])

    def test_count_mode(self):
        session = mock_session(
            search_results=[member_page(0, 1000), member_page(1000, 1000), member_page(2000, 500)],
            response_controls=[paging_controls(b'c1'), paging_controls(b'c2'), paging_controls(b'')]
        )

        self.assertEqual(self.accumulator.count_values(session, GROUP_DN), 2500)
        self.assertEqual(session.search.call_count, 3)

    def test_object_level_search_of_member_attribute(self):
        session = mock_session(search_results=[member_page(0, 3)],
                               response_controls=[paging_controls(b'')])

        self.accumulator.collect_values(session, GROUP_DN)

        session.search.assert_called_once_with(GROUP_DN, '(objectClass=*)', scope=BASE,
                                               attributes=['member'])

    def test_first_request_is_always_issued(self):
        session = mock_session(search_results=[member_page(0, 1)], response_controls=[{}])

        self.assertEqual(self.accumulator.collect_values(session, GROUP_DN),
                         ['CN=user00000,CN=Users,DC=sandbox,DC=local'])
        session.search.assert_called_once()

    def test_group_without_members(self):
        session = mock_session(search_results=[[search_entry(GROUP_DN)]],
                               response_controls=[paging_controls(b'')])

        self.assertEqual(self.accumulator.collect_values(session, GROUP_DN), [])

        session = mock_session(search_results=[[search_entry(GROUP_DN)]],
                               response_controls=[paging_controls(b'')])
        self.assertEqual(self.accumulator.count_values(session, GROUP_DN), 0)

    def test_search_error_aborts_without_partial_result(self):
        session = mock_session(
            search_results=[member_page(0, 1000), NotFoundError("Search failed: noSuchObject (32)")],
            response_controls=[paging_controls(b'c1')]
        )

        with self.assertRaises(NotFoundError):
            self.accumulator.collect_values(session, GROUP_DN)
        self.assertEqual(session.search.call_count, 2)

    def test_missing_group_fails_on_first_page(self):
        session = mock_session(search_results=[NotFoundError("noSuchObject")])

        with self.assertRaises(NotFoundError):
            self.accumulator.count_values(session, GROUP_DN)
        session.get_response_controls.assert_not_called()

    def test_collect_entry_dns(self):
        users_dn = 'CN=Users,DC=sandbox,DC=local'
        session = mock_session(
            search_results=[
                [search_entry('CN=sales,' + users_dn), search_entry('CN=hr,' + users_dn)],
                [search_entry('CN=it,' + users_dn)],
            ],
            response_controls=[paging_controls(b'next'), paging_controls(b'')]
        )

        dns = self.accumulator.collect_entry_dns(session, users_dn, '(objectClass=group)')

        self.assertEqual(dns, ['CN=sales,' + users_dn, 'CN=hr,' + users_dn, 'CN=it,' + users_dn])
        session.search.assert_called_with(users_dn, '(objectClass=group)', scope=SUBTREE,
                                          attributes=None)

    def test_invalid_page_size(self):
        with self.assertRaises(ValueError):
            PagedSearchAccumulator(page_size=0)


if __name__ == '__main__':
    unittest.main()
