"""perfwatch: performance monitoring core for the domain marketplace.

Run the API with ``uvicorn --factory perfwatch.app:create_app``.
"""

__version__ = '0.1.0'
