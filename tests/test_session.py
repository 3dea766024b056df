#!/usr/bin/env python3
"""
Unit tests for directory sessions.
"""

import os
import sys
import ssl
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import BASE, SUBTREE
from ldap3.core.exceptions import LDAPSocketOpenError, LDAPSocketReceiveError

from ldap_groups.errors import (
    AlreadyExistsError, FatalDirectoryError, InvalidDNError, NotFoundError,
    TransientDirectoryError
)
from ldap_groups.session import DirectorySession, _create_tls_config
from mock_directory import ADMIN_DN, ADMIN_PASSWORD, USERS_DN, build_settings

SUCCESS = {'result': 0, 'description': 'success', 'message': '', 'type': 'modifyResponse'}


def failure(code, description):
    return {'result': code, 'description': description, 'message': '', 'type': 'modifyResponse'}


def mock_connection():
    connection = Mock()
    connection.result = dict(SUCCESS)
    connection.response = []
    return connection


class TestConnect(unittest.TestCase):
    """Test cases for DirectorySession.connect."""

    @patch('ldap_groups.session.Connection')
    @patch('ldap_groups.session.Server')
    def test_connect_binds_as_admin_principal(self, mock_server, mock_connection_class):
        connection = mock_connection()
        connection.bind.return_value = True
        mock_connection_class.return_value = connection

        session = DirectorySession.connect(build_settings())

        self.assertIs(session.connection, connection)
        mock_server.assert_called_once()
        self.assertEqual(mock_server.call_args.args[0], 'ldaps://dc01.sandbox.local:636')
        kwargs = mock_connection_class.call_args.kwargs
        self.assertEqual(kwargs['user'], ADMIN_DN)
        self.assertEqual(kwargs['password'], ADMIN_PASSWORD)
        connection.open.assert_called_once()
        connection.bind.assert_called_once()

    @patch('ldap_groups.session.Connection')
    @patch('ldap_groups.session.Server')
    def test_unreachable_server_is_transient(self, mock_server, mock_connection_class):
        connection = mock_connection()
        connection.open.side_effect = LDAPSocketOpenError("connection refused")
        mock_connection_class.return_value = connection

        with self.assertRaises(TransientDirectoryError):
            DirectorySession.connect(build_settings())
        connection.unbind.assert_called_once()

    @patch('ldap_groups.session.Connection')
    @patch('ldap_groups.session.Server')
    def test_bind_failure_is_fatal(self, mock_server, mock_connection_class):
        connection = mock_connection()
        connection.bind.return_value = False
        connection.result = failure(49, 'invalidCredentials')
        mock_connection_class.return_value = connection

        with self.assertRaises(FatalDirectoryError) as context:
            DirectorySession.connect(build_settings())
        self.assertIn('invalidCredentials', str(context.exception))
        connection.unbind.assert_called_once()

    @patch('ldap_groups.session.Connection')
    @patch('ldap_groups.session.Server')
    def test_start_tls(self, mock_server, mock_connection_class):
        connection = mock_connection()
        connection.bind.return_value = True
        mock_connection_class.return_value = connection

        DirectorySession.connect(build_settings(use_ssl=False, start_tls=True, port=389))

        connection.start_tls.assert_called_once()
        self.assertEqual(mock_server.call_args.args[0], 'ldap://dc01.sandbox.local:389')


class TestTlsConfig(unittest.TestCase):

    def test_no_tls_for_plain_ldap(self):
        self.assertIsNone(_create_tls_config(build_settings(use_ssl=False)))

    @patch('ldap_groups.session.Tls')
    def test_verification_settings(self, mock_tls):
        _create_tls_config(build_settings(verify_ssl=False))
        mock_tls.assert_called_with(validate=ssl.CERT_NONE)

        _create_tls_config(build_settings(ca_cert_file='/etc/ssl/ad-ca.pem'))
        mock_tls.assert_called_with(validate=ssl.CERT_REQUIRED, ca_certs_file='/etc/ssl/ad-ca.pem')


class TestSessionOperations(unittest.TestCase):
    """Operations map results to error kinds."""

    def setUp(self):
        self.connection = mock_connection()
        self.session = DirectorySession(self.connection)
        self.group_dn = f"CN=sales,{USERS_DN}"

    def test_search_returns_entries_only(self):
        self.connection.response = [
            {'dn': self.group_dn, 'attributes': {'member': []}, 'type': 'searchResEntry'},
            {'uri': ['ldap://other/'], 'type': 'searchResRef'},
        ]

        entries = self.session.search(USERS_DN, '(objectClass=group)', scope=SUBTREE)

        self.assertEqual([entry['dn'] for entry in entries], [self.group_dn])

    def test_empty_search_is_not_an_error(self):
        self.connection.search.return_value = False

        self.assertEqual(self.session.search(USERS_DN, '(cn=nobody)'), [])

    def test_search_missing_base(self):
        self.connection.result = failure(32, 'noSuchObject')

        with self.assertRaises(NotFoundError):
            self.session.search(self.group_dn, '(objectClass=*)', scope=BASE)

    def test_request_controls_apply_to_next_search_only(self):
        control = ('1.2.840.113556.1.4.319', False, b'value')
        self.session.set_request_controls([control])

        self.session.search(self.group_dn, '(objectClass=*)', scope=BASE)
        self.session.search(self.group_dn, '(objectClass=*)', scope=BASE)

        first, second = self.connection.search.call_args_list
        self.assertEqual(first.kwargs['controls'], [control])
        self.assertIsNone(second.kwargs['controls'])

    def test_response_controls(self):
        controls = {'1.2.840.113556.1.4.319': {'value': {'cookie': b'abc', 'size': 0}}}
        self.connection.result = dict(SUCCESS, controls=controls)

        self.assertEqual(self.session.get_response_controls(), controls)

        self.connection.result = dict(SUCCESS)
        self.assertEqual(self.session.get_response_controls(), {})

    def test_socket_error_during_search_is_transient(self):
        self.connection.search.side_effect = LDAPSocketReceiveError("connection reset")

        with self.assertRaises(TransientDirectoryError):
            self.session.search(USERS_DN, '(objectClass=group)')

    def test_modify(self):
        changes = {'member': [('MODIFY_ADD', [f"CN=alice,{USERS_DN}"])]}

        self.session.modify(self.group_dn, changes)

        self.connection.modify.assert_called_once_with(self.group_dn, changes)

    def test_busy_server_is_transient(self):
        self.connection.result = failure(51, 'busy')

        with self.assertRaises(TransientDirectoryError):
            self.session.modify(self.group_dn, {})

    def test_create_existing_entry(self):
        self.connection.result = failure(68, 'entryAlreadyExists')

        with self.assertRaises(AlreadyExistsError):
            self.session.create_entry(self.group_dn, {'objectClass': ['top', 'group']})

    def test_delete_missing_entry(self):
        self.connection.result = failure(32, 'noSuchObject')

        with self.assertRaises(NotFoundError):
            self.session.delete_entry(self.group_dn)
        self.connection.delete.assert_called_once_with(self.group_dn)

    def test_malformed_dn_fails_before_request(self):
        with self.assertRaises(InvalidDNError):
            self.session.delete_entry('sales')
        self.connection.delete.assert_not_called()

    def test_rename_within_same_container(self):
        self.session.rename(self.group_dn, f"CN=marketing,{USERS_DN}")

        self.connection.modify_dn.assert_called_once_with(self.group_dn, 'CN=marketing',
                                                          new_superior=None)

    def test_rename_to_other_container(self):
        self.session.rename(self.group_dn, 'CN=sales,OU=Groups,DC=sandbox,DC=local')

        self.connection.modify_dn.assert_called_once_with(
            self.group_dn, 'CN=sales', new_superior='OU=Groups,DC=sandbox,DC=local')

    def test_close_is_idempotent(self):
        self.session.close()
        self.session.close()

        self.connection.unbind.assert_called_once()

    def test_context_manager_closes_on_error(self):
        self.connection.result = failure(32, 'noSuchObject')

        with self.assertRaises(NotFoundError):
            with self.session as session:
                session.delete_entry(self.group_dn)

        self.connection.unbind.assert_called_once()


if __name__ == '__main__':
    unittest.main()
