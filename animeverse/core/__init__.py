"""Transport, session and lifetime primitives shared by the services."""
