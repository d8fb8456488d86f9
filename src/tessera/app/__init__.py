"""Reference application: users, authentication and password recovery."""
