"""Poll a commerce platform for new orders and turn each one into a PDF invoice."""

__version__ = "1.0.0"
