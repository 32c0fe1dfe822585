"""
Module Access Request Service
Blueprint registry.

    access_request_bp   /api/v1/access-requests
    catalog_bp          /api/v1/modules, /api/v1/departments
    health_bp           /api/v1/health
"""
