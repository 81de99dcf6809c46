# authgate/cli/__init__.py
