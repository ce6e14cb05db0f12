"""
Anonymous Copyright Registry

Registration of authors, works and disputes over an encrypted-computation
backend. Content fingerprints and author identities are only ever held as
opaque encrypted handles.
"""

__version__ = "1.0.0"
__author__ = "Anonymous Copyright Team"
__description__ = "Encrypted copyright registration and dispute resolution"
