"""API package.

This exposes router modules to simplify test imports like:
	from fisboard.api.routes.upload import router
"""

__all__ = [
	"routes",
]
