"""Tridion CoreService administration package.

To use the trustee services:
    from tridion.core.coreservice import CoreServiceClient, UserService, GroupService

To load or persist connection settings:
    from tridion.config import load_settings, save_settings
"""
