"""SafeKey Vault Meta information.
   SafeKey Vault encrypts per-domain credentials under a single master secret.
"""
__title__ = 'safekey_vault'
__description__ = (
   'SafeKey Vault encrypts per-domain credentials under a single '
   'master secret and stores them by domain fingerprint.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 SafeKey Developers'
__author__ = 'SafeKey Developers'
__author_email__ = 'dev@safekey.example'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/safekey/safekey-vault'
