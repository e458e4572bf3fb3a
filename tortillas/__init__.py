"""
                Las Tortillas Ordering Service

Order lifecycle and table allocation back end for the Las Tortillas
restaurants: storefront cart, checkout, dine-in tables, order status
workflow and live sync for kitchen and admin viewers.

Version: 1.0.0
"""

__version__ = "1.0.0"
