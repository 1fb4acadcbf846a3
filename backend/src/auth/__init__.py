"""
Authentication: sessions, API tokens, JWT bearer tokens, OAuth links and
client-IP resolution.

Import from the submodules directly; the audit layer depends on
client_ip, so this package init stays import-free.
"""
