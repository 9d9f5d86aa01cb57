"""Protocol primitives shared by every kcert layer."""
