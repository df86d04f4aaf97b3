"""Core directory logic, independent of any CLI or web surface.

Module Structure:
    - msgraph/          : Directory API client, application services and
                          relationship reconciliation

Usage Pattern:
    from appreg.core.msgraph import DirectoryClient, ApplicationService

    client = DirectoryClient(api_version="beta")
    client.authenticate_service_account(tenant_id, client_id, client_secret)
    apps = ApplicationService(client)
    result = apps.remove_owners(app_id, ["owner-object-id"])
"""
