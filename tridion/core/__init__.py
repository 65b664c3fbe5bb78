"""Core Business Logic Module

Trustee administration against the CoreService, independent of any CLI.

Module Structure:
    - coreservice/      : SOAP client, binding negotiation, user and group services
    - validators.py     : TCM URI and trustee name validation

Usage Pattern:
    from tridion.core.coreservice import CoreServiceClient, UserService, GroupService
    from tridion.core.validators import normalize_user_id, parse_tcm_uri
"""
