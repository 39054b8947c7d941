"""
Upstream access: paced fetch client, page collector, link discovery,
streaming CSV parser and the per-source extractors built on them.
"""
