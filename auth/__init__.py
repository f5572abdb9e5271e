"""auth/ -- Passwordless authentication core for FieldDay.

One-time codes, magic links, fixed-window rate limiting, access/refresh
token issuance and rotation, and request identity resolution.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
(config, TYPE_CHECKING only) and cache/ (SecretStore protocol, TYPE_CHECKING
only). api/ imports from auth/, not the other way around.
"""
