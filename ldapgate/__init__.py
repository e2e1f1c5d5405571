# -*- coding: utf-8 -*-
"""Location: ./ldapgate/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

ldapgate: authenticate users against an LDAP directory and reconcile them
with local identities.
"""

__version__ = "0.1.0"
