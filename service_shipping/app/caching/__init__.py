"""
Shipping caching package.

Holds the in-memory quote cache that keeps a checkout session from asking
the carrier for the same rates twice. Entries are immutable and expire on
read.
"""
