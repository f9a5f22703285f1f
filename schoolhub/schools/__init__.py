"""
Schools (tenants).

Modules:
    models      — School record and settings patch inputs
    repository  — persistence contract, in-memory and SQL stores
    service     — cache-aside reads, merge-patch writes, Fondy connection
"""
