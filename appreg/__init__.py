"""Directory application registration client.

To use the application services:
    from appreg.core.msgraph import DirectoryClient, ApplicationService

To load configuration:
    from appreg.config import load_settings
"""
