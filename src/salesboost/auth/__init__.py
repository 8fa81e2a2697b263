"""Client-side authentication state.

Provides the persistent auth cache and its storage backends, the auth
service collaborator (abstract + HTTP), the reconciler that merges cached
and server-verified identity, and pure role-guard predicates.
"""
