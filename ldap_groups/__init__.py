"""
LDAP Group Manager - Manage Active Directory groups and their membership over LDAP.

This package provides group lifecycle operations, batched membership changes
and paged membership reads on top of ldap3.
"""

__version__ = "1.0.0"
__author__ = "LDAP Group Manager Team"
