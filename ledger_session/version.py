"""Ledger Session Meta information.
   Ledger Session keeps a user identity, its authorization token and
   a local projection of its ledger profile.
"""
__title__ = 'ledger_session'
__description__ = (
   'Ledger Session derives a user identity from a secret and keeps '
   'an authorized session against append-only ledger endpoints.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Ledger Session Authors'
__author__ = 'Ledger Session Authors'
__license__ = 'Apache-2.0'
