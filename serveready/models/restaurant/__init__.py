from .restaurant_model import MenuItem, Restaurant

__all__ = ["MenuItem", "Restaurant"]
