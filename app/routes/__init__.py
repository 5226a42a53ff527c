from .pricebook import pricebook_bp

__all__ = ["pricebook_bp"]
