"""Madrassah Analytics Backend.

Student, class, teacher and program analytics for madrassah programs,
with threshold alerts and a dashboard summary.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
