"""
Clinic app - appointments and the services rendered during them.

Billing reads appointments through clinic.selectors; it never writes them.
"""
