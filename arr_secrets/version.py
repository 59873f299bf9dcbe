"""Arr Secrets Meta information.
   Arr Secrets bootstraps the dashboard root secrets and protects
   credentials at rest.
"""
__title__ = 'arr_secrets'
__description__ = (
   'Root secret bootstrapping, authenticated field encryption '
   'and password hashing for the Arr dashboard.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 Arr Dashboard contributors'
__author__ = 'Arr Dashboard contributors'
__license__ = 'Apache-2.0'
