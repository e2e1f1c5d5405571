# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Services Package.
Exposes the directory authentication services:
- Connection management and referral handling
- User lookup and admin determination
- Authentication orchestration and diagnostics
- Local identity storage
"""
