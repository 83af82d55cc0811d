"""SalonManager backend: tenant access control and subscription lifecycle."""
