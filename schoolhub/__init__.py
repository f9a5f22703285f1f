"""SchoolHub backend: layered configuration and school (tenant) data access."""
