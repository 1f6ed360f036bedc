"""huntstore - storage cutover toolkit for organization and hunt records."""

__version__ = "0.1.0"
