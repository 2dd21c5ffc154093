"""Company Vault Meta information.
   Company Vault keeps small per-company secrets encrypted under a shared passphrase.
"""
__title__ = 'company_vault'
__description__ = (
   'Company Vault keeps small per-company secrets encrypted '
   'under a shared passphrase.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/company-vault'
