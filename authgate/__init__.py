# authgate/__init__.py
# Embedded OAuth 2.0 authorization server with external IdP federation

__version__ = "0.1.0"
