"""
Command line entry point for LDAP Group Manager.

Maps each sub-command 1:1 onto a group or membership operation, prints a
plain success message, and turns error kinds into exit codes.
"""

import sys
import logging
import argparse
import functools
from typing import Any, Dict, List, Optional

from ldap_groups.config import ConfigurationError, DirectorySettings, load_config
from ldap_groups.errors import AlreadyExistsError, DirectoryError, NotFoundError
from ldap_groups.groups import GroupLifecycleManager
from ldap_groups.logging_setup import setup_logging
from ldap_groups.membership import MembershipMutator, MembershipResult
from ldap_groups.paging import PagedSearchAccumulator
from ldap_groups.resolver import IdentifierResolver
from ldap_groups.retry import RetryExecutor
from ldap_groups.session import DirectorySession

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_SERVER_ERROR = 1
EXIT_CLIENT_ERROR = 2
EXIT_PARTIAL_FAILURE = 3


class GroupCommandRunner:
    """
    Wires configuration into the group services and runs CLI commands.
    """

    def __init__(self, config: Dict[str, Any], session_factory=None):
        """
        Initialize the runner.

        Args:
            config: Loaded configuration dictionary
            session_factory: Callable returning a DirectorySession; defaults to
                connecting with the configured settings
        """
        self.settings = DirectorySettings.from_config(config)
        self.session_factory = session_factory or functools.partial(DirectorySession.connect,
                                                                    self.settings)
        retry_executor = RetryExecutor.from_config(config.get('error_handling'))
        accumulator = PagedSearchAccumulator(self.settings.page_size)

        self.groups = GroupLifecycleManager(
            self.settings, self.session_factory,
            accumulator=accumulator,
            retry_executor=retry_executor
        )
        self.membership = MembershipMutator(
            self.settings, self.session_factory,
            resolver=IdentifierResolver(self.settings, accumulator),
            accumulator=accumulator,
            batch_size=self.settings.batch_size,
            retry_executor=retry_executor
        )

    def run(self, args: argparse.Namespace) -> int:
        """Run the parsed command and return the process exit code."""
        handler = getattr(self, '_cmd_' + args.command.replace('-', '_'))
        try:
            return handler(args)
        except (NotFoundError, AlreadyExistsError) as e:
            logger.warning(f"{args.command} failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_CLIENT_ERROR
        except DirectoryError as e:
            logger.error(f"{args.command} failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_SERVER_ERROR

    def _cmd_create(self, args) -> int:
        self.groups.create_group(args.group)
        print(f"Group created: {args.group}")
        return EXIT_SUCCESS

    def _cmd_delete(self, args) -> int:
        self.groups.delete_group(args.group)
        print(f"Group deleted: {args.group}")
        return EXIT_SUCCESS

    def _cmd_rename(self, args) -> int:
        self.groups.rename_group(args.old_name, args.new_name)
        print(f"Group renamed from {args.old_name} to {args.new_name}")
        return EXIT_SUCCESS

    def _cmd_add_member(self, args) -> int:
        self.membership.add_member(args.user, args.group)
        print(f"User {args.user} added to group {args.group}")
        return EXIT_SUCCESS

    def _cmd_remove_member(self, args) -> int:
        self.membership.remove_member(args.user, args.group)
        print(f"User {args.user} removed from group {args.group}")
        return EXIT_SUCCESS

    def _cmd_add_members(self, args) -> int:
        return self._report(self.membership.add_users(args.users, args.group), 'added to', args.group)

    def _cmd_remove_members(self, args) -> int:
        return self._report(self.membership.remove_users(args.users, args.group), 'removed from', args.group)

    def _cmd_list_members(self, args) -> int:
        for member in self.membership.list_members(args.group):
            print(member)
        return EXIT_SUCCESS

    def _cmd_count_members(self, args) -> int:
        print(self.membership.count_members(args.group))
        return EXIT_SUCCESS

    def _cmd_list_groups(self, args) -> int:
        for group in self.groups.list_groups():
            print(group)
        return EXIT_SUCCESS

    def _report(self, result: MembershipResult, verb: str, group: str) -> int:
        print(f"{len(result.succeeded)} users {verb} group {group}")
        for batch in result.failed:
            print(f"Failed batch of {len(batch)}: {', '.join(batch)}", file=sys.stderr)
        return EXIT_PARTIAL_FAILURE if result.has_failures else EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ldap-groups', description='LDAP group management')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('create', help='Create a group').add_argument('group')
    commands.add_parser('delete', help='Delete a group').add_argument('group')

    rename = commands.add_parser('rename', help='Rename a group')
    rename.add_argument('old_name')
    rename.add_argument('new_name')

    for name, help_text in [('add-member', 'Add a user to a group'),
                            ('remove-member', 'Remove a user from a group')]:
        command = commands.add_parser(name, help=help_text)
        command.add_argument('group')
        command.add_argument('user')

    for name, help_text in [('add-members', 'Add several users to a group'),
                            ('remove-members', 'Remove several users from a group')]:
        command = commands.add_parser(name, help=help_text)
        command.add_argument('group')
        command.add_argument('users', nargs='+')

    commands.add_parser('list-members', help='List the members of a group').add_argument('group')
    commands.add_parser('count-members', help='Count the members of a group').add_argument('group')
    commands.add_parser('list-groups', help='List all groups')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CLIENT_ERROR

    setup_logging(config.get('logging', {}))
    return GroupCommandRunner(config).run(args)


if __name__ == "__main__":
    sys.exit(main())
